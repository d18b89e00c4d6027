"""Tests for the event-driven agent registry."""

from dataclasses import replace

import pytest
from uuid_extensions import uuid7

from incentiveos.agents.registry import (
    BUILTIN_AGENTS,
    ActionType,
    AgentAction,
    AgentContext,
    AgentRegistry,
    EventKind,
    Persona,
    Severity,
    default_registry,
)

TENANT = uuid7()


def _dispatch(event: EventKind, **payload: object) -> list[AgentAction]:
    return default_registry().dispatch(AgentContext(event=event, tenant_id=TENANT, payload=payload))


class TestRegistry:
    """Registration and dispatch."""

    def test_default_registry_has_builtins(self) -> None:
        registry = default_registry()
        assert [a.agent_id for a in registry.list_agents()] == [a.agent_id for a in BUILTIN_AGENTS]
        assert len(registry.list_agents()) == 5
        assert registry.get("dispute_triage") is not None
        assert registry.get("missing") is None

    def test_duplicate_registration_rejected(self) -> None:
        registry = default_registry()
        with pytest.raises(ValueError, match="already registered"):
            registry.register(BUILTIN_AGENTS[0])

    def test_disabled_agent_not_dispatched(self) -> None:
        registry = AgentRegistry()
        registry.register(replace(BUILTIN_AGENTS[0], enabled=False))
        context = AgentContext(EventKind.CALCULATION_COMPLETED, TENANT, {"entity_count": 0})
        assert registry.dispatch(context) == []

    def test_event_without_observers(self) -> None:
        assert _dispatch(EventKind.DATA_COMMITTED) == []


class TestBuiltinAgents:
    """Actions produced by the built-in agents."""

    def test_empty_run_alert(self) -> None:
        (action,) = _dispatch(EventKind.CALCULATION_COMPLETED, entity_count=0)
        assert action.action_type == ActionType.ALERT
        assert action.severity == Severity.WARNING

    def test_partial_ratio_alert(self) -> None:
        (action,) = _dispatch(EventKind.CALCULATION_COMPLETED, entity_count=10, partial_count=2)
        assert action.title == "High share of partial results"

    def test_healthy_run_insight(self) -> None:
        (action,) = _dispatch(
            EventKind.CALCULATION_COMPLETED, entity_count=10, partial_count=1, total_payout=1234.5,
        )
        assert action.action_type == ActionType.INSIGHT
        assert "1,234.50" in action.description

    def test_false_green_and_discrepancies(self) -> None:
        actions = _dispatch(
            EventKind.RECONCILIATION_COMPLETED,
            false_green_detected=True, finding_count=10, discrepancy_count=3,
        )
        assert [a.action_type for a in actions] == [ActionType.ACTION_REQUIRED, ActionType.RECOMMENDATION]
        assert actions[0].severity == Severity.CRITICAL

    def test_clean_reconciliation_is_quiet(self) -> None:
        assert _dispatch(EventKind.RECONCILIATION_COMPLETED, finding_count=100, discrepancy_count=5) == []

    @pytest.mark.parametrize(("amount", "severity"), [(500.0, Severity.WARNING), (10_000.0, Severity.CRITICAL)])
    def test_dispute_triage(self, amount: float, severity: Severity) -> None:
        (action,) = _dispatch(EventKind.DISPUTE_SUBMITTED, amount_disputed=amount, category="payout")
        assert action.severity == severity
        assert action.persona == Persona.MANAGER

    def test_outlier_and_plan_correction(self) -> None:
        (outlier,) = _dispatch(EventKind.CALCULATION_OUTLIER_DETECTED, entity_external_id="E1")
        assert "E1" in outlier.description
        (steward,) = _dispatch(EventKind.PLAN_CORRECTED, rule_set_id="rs-1")
        assert steward.to_dict()["agent_id"] == "flywheel_steward"
