"""Agent registry — event-driven agents as pure functions.

Each agent declares the closed set of event kinds it observes and an
``evaluate`` function from ``AgentContext`` to a list of ``AgentAction``.
Agents hold no state and perform no I/O; anything they learn travels through
the signal log instead.

Deterministic — no LLM calls.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any
from uuid import UUID

logger = logging.getLogger(__name__)


class EventKind(StrEnum):
    CALCULATION_COMPLETED = "calculation.completed"
    CALCULATION_OUTLIER_DETECTED = "calculation.outlier_detected"
    RECONCILIATION_COMPLETED = "reconciliation.completed"
    DISPUTE_SUBMITTED = "dispute.submitted"
    DATA_COMMITTED = "data.committed"
    PLAN_CORRECTED = "plan.corrected"


class ActionType(StrEnum):
    ALERT = "alert"
    INSIGHT = "insight"
    RECOMMENDATION = "recommendation"
    ACTION_REQUIRED = "action_required"


class Severity(StrEnum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class Persona(StrEnum):
    ADMIN = "admin"
    MANAGER = "manager"
    REP = "rep"


@dataclass(frozen=True)
class AgentContext:
    event: EventKind
    tenant_id: UUID
    payload: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AgentAction:
    agent_id: str
    action_type: ActionType
    title: str
    description: str
    severity: Severity = Severity.INFO
    persona: Persona = Persona.ADMIN

    def to_dict(self) -> dict[str, str]:
        return {
            "agent_id": self.agent_id,
            "action_type": str(self.action_type),
            "title": self.title,
            "description": self.description,
            "severity": str(self.severity),
            "persona": str(self.persona),
        }


@dataclass(frozen=True)
class AgentDefinition:
    agent_id: str
    name: str
    description: str
    observes: frozenset[EventKind]
    evaluate: Callable[[AgentContext], list[AgentAction]]
    enabled: bool = True


class AgentRegistry:
    """Ordered collection of agent definitions."""

    def __init__(self) -> None:
        self._agents: dict[str, AgentDefinition] = {}

    def register(self, agent: AgentDefinition) -> None:
        if agent.agent_id in self._agents:
            msg = f"Agent '{agent.agent_id}' is already registered."
            raise ValueError(msg)
        self._agents[agent.agent_id] = agent

    def get(self, agent_id: str) -> AgentDefinition | None:
        return self._agents.get(agent_id)

    def list_agents(self) -> list[AgentDefinition]:
        return list(self._agents.values())

    def agents_for(self, event: EventKind) -> list[AgentDefinition]:
        return [a for a in self._agents.values() if a.enabled and event in a.observes]

    def dispatch(self, context: AgentContext) -> list[AgentAction]:
        """Run every enabled agent observing the event, in registration order."""
        actions: list[AgentAction] = []
        for agent in self.agents_for(context.event):
            actions.extend(agent.evaluate(context))
        if actions:
            logger.info("%s produced %d agent action(s)", context.event, len(actions))
        return actions


# ---------------------------------------------------------------------------
# Built-in agents
# ---------------------------------------------------------------------------

PARTIAL_RATIO_WARNING = 0.10
DISCREPANCY_RATIO_WARNING = 0.05
DISPUTE_AMOUNT_CRITICAL = 10_000.0


def _calculation_health(ctx: AgentContext) -> list[AgentAction]:
    entity_count = int(ctx.payload.get("entity_count", 0))
    partial_count = int(ctx.payload.get("partial_count", 0))
    total = float(ctx.payload.get("total_payout", 0.0))
    if entity_count == 0:
        return [AgentAction(
            "calculation_health", ActionType.ALERT, "Calculation produced no results",
            "No entity had committed data for the period.", Severity.WARNING,
        )]
    ratio = partial_count / entity_count
    if ratio > PARTIAL_RATIO_WARNING:
        return [AgentAction(
            "calculation_health", ActionType.ALERT, "High share of partial results",
            f"{partial_count} of {entity_count} entities ({ratio:.0%}) had missing inputs.",
            Severity.WARNING,
        )]
    return [AgentAction(
        "calculation_health", ActionType.INSIGHT, "Calculation completed",
        f"{entity_count} entities, total payout {total:,.2f}.",
    )]


def _outlier_watch(ctx: AgentContext) -> list[AgentAction]:
    entity = ctx.payload.get("entity_external_id", "unknown")
    return [AgentAction(
        "outlier_watch", ActionType.ALERT, "Payout outlier detected",
        f"Entity {entity} payout deviates from the population.",
        Severity.WARNING, Persona.MANAGER,
    )]


def _reconciliation_watch(ctx: AgentContext) -> list[AgentAction]:
    actions: list[AgentAction] = []
    if ctx.payload.get("false_green_detected"):
        actions.append(AgentAction(
            "reconciliation_watch", ActionType.ACTION_REQUIRED, "False green detected",
            "Totals agree but component payouts offset each other.", Severity.CRITICAL,
        ))
    findings = int(ctx.payload.get("finding_count", 0))
    discrepancies = int(ctx.payload.get("discrepancy_count", 0))
    if findings and discrepancies / findings > DISCREPANCY_RATIO_WARNING:
        actions.append(AgentAction(
            "reconciliation_watch", ActionType.RECOMMENDATION, "Review reconciliation discrepancies",
            f"{discrepancies} of {findings} comparisons disagree with the benchmark.",
            Severity.WARNING,
        ))
    return actions


def _dispute_triage(ctx: AgentContext) -> list[AgentAction]:
    amount = float(ctx.payload.get("amount_disputed") or 0.0)
    severity = Severity.CRITICAL if amount >= DISPUTE_AMOUNT_CRITICAL else Severity.WARNING
    return [AgentAction(
        "dispute_triage", ActionType.ACTION_REQUIRED, "Dispute submitted",
        f"{ctx.payload.get('category', 'general')} dispute for {amount:,.2f}.",
        severity, Persona.MANAGER,
    )]


def _flywheel_steward(ctx: AgentContext) -> list[AgentAction]:
    rule_set_id = ctx.payload.get("rule_set_id")
    return [AgentAction(
        "flywheel_steward", ActionType.RECOMMENDATION, "Reset learned density",
        f"Plan {rule_set_id} was corrected; run a nuclear clear on its patterns.",
        Severity.WARNING,
    )]


BUILTIN_AGENTS: tuple[AgentDefinition, ...] = (
    AgentDefinition(
        "calculation_health", "Calculation health",
        "Flags empty runs and high partial-result ratios.",
        frozenset({EventKind.CALCULATION_COMPLETED}), _calculation_health,
    ),
    AgentDefinition(
        "outlier_watch", "Outlier watch", "Surfaces payout outliers to managers.",
        frozenset({EventKind.CALCULATION_OUTLIER_DETECTED}), _outlier_watch,
    ),
    AgentDefinition(
        "reconciliation_watch", "Reconciliation watch",
        "Escalates false greens and discrepancy-heavy reconciliations.",
        frozenset({EventKind.RECONCILIATION_COMPLETED}), _reconciliation_watch,
    ),
    AgentDefinition(
        "dispute_triage", "Dispute triage", "Routes new disputes to managers.",
        frozenset({EventKind.DISPUTE_SUBMITTED}), _dispute_triage,
    ),
    AgentDefinition(
        "flywheel_steward", "Flywheel steward",
        "Recommends clearing density after plan corrections.",
        frozenset({EventKind.PLAN_CORRECTED}), _flywheel_steward,
    ),
)


def default_registry() -> AgentRegistry:
    registry = AgentRegistry()
    for agent in BUILTIN_AGENTS:
        registry.register(agent)
    return registry
