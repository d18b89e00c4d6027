"""Tests for reconciliation, dispute, and pattern density endpoints."""

from datetime import date
from typing import Any

import pytest
from uuid_extensions import uuid7

from incentiveos.models.common import RuleSetStatus, SignalType
from incentiveos.models.data import CommittedRow, Entity, Period
from incentiveos.models.plan import Component, RuleSet, Variant
from incentiveos.repositories.data import CommittedDataRepository, EntityRepository, PeriodRepository
from incentiveos.repositories.flywheel import SqlPatternStore, SqlSignalLog
from incentiveos.repositories.plans import RuleSetRepository


def _make_rule_set(tenant: Any) -> RuleSet:
    return RuleSet(
        tenant_id=tenant, name="Retail 2026", status=RuleSetStatus.ACTIVE, effective_from=date(2026, 1, 1),
        variants=[Variant(variant_id="default", components=[
            Component(
                component_id="attainment_bonus", name="Attainment Bonus", order=1, componentType="tier_lookup",
                config={"metric": "attainment", "tiers": [
                    {"min": 0, "max": 80, "value": 0},
                    {"min": 80, "max": 100, "value": 500},
                    {"min": 100, "value": 1000},
                ]},
            ),
            Component(
                component_id="commission", name="Commission", order=2, componentType="percentage",
                config={"appliedTo": "sales", "rate": 0.05},
            ),
        ])],
    )


async def _calculated_batch(client: Any, session: Any) -> tuple[Any, RuleSet, str]:
    """Seed E1 (1000 + 100) and E2 (500 + 50), run, and return the batch id."""
    tenant = uuid7()
    period = Period(
        tenant_id=tenant, canonical_key="2026-03",
        start_date=date(2026, 3, 1), end_date=date(2026, 3, 31),
    )
    rule_set = _make_rule_set(tenant)
    await PeriodRepository(session).create(period)
    await RuleSetRepository(session).create(rule_set)
    committed = []
    for ext, data in {"E1": {"attainment": 100, "sales": 2000}, "E2": {"attainment": 80, "sales": 1000}}.items():
        entity = Entity(tenant_id=tenant, external_id=ext)
        await EntityRepository(session).create(entity)
        committed.append(CommittedRow(
            tenant_id=tenant, entity_id=entity.entity_id, period_id=period.period_id, row_data=data,
        ))
    await CommittedDataRepository(session).create_many(committed)

    resp = await client.post(
        f"/v1/tenants/{tenant}/calculations/run",
        json={"period_id": str(period.period_id), "rule_set_id": str(rule_set.rule_set_id)},
    )
    assert resp.status_code == 200
    return tenant, rule_set, resp.json()["batch_id"]


def _expect(entity: str, value: float, component: str | None = None) -> dict[str, Any]:
    return {"entityExternalId": entity, "componentId": component, "expectedOutcome": value}


class TestReconcileEndpoint:
    """POST /v1/tenants/{tenant_id}/batches/{batch_id}/reconcile"""

    @pytest.mark.anyio
    async def test_matching_benchmark(self, client, db_session) -> None:
        tenant, _, batch_id = await _calculated_batch(client, db_session)

        resp = await client.post(
            f"/v1/tenants/{tenant}/batches/{batch_id}/reconcile",
            json={"expectations": [
                _expect("E1", 1000, "attainment_bonus"), _expect("E1", 100, "commission"),
                _expect("E2", 500, "attainment_bonus"), _expect("E2", 50, "commission"),
            ]},
        )

        assert resp.status_code == 200
        data = resp.json()
        assert data["matched_entities"] == 2
        assert data["classification_counts"]["match"] == 4
        assert data["false_green_detected"] is False
        assert data["signals_recorded"] == 2
        assert data["actions"] == []

        signals = await SqlSignalLog(db_session).list_for_tenant(
            tenant, signal_types=[SignalType.RECONCILIATION],
        )
        assert sorted(s.payload["agreements"] for s in signals) == [2, 2]

    @pytest.mark.anyio
    async def test_offsetting_components_raise_false_green(self, client, db_session) -> None:
        tenant, _, batch_id = await _calculated_batch(client, db_session)

        resp = await client.post(
            f"/v1/tenants/{tenant}/batches/{batch_id}/reconcile",
            json={"expectations": [
                _expect("E1", 850, "attainment_bonus"), _expect("E1", 250, "commission"),
            ]},
        )

        data = resp.json()
        assert data["false_green_detected"] is True
        assert data["false_green_entities"] == ["E1"]
        by_component = {f["component_id"]: f for f in data["findings"] if f["entity_external_id"] == "E1"}
        assert by_component["attainment_bonus"]["classification"] == "logic_divergence"
        assert by_component["commission"]["classification"] == "data_divergence"
        # E2 has no expectation at all
        assert data["classification_counts"]["scope_mismatch"] == 1
        action_types = [a["action_type"] for a in data["actions"]]
        assert action_types == ["action_required", "recommendation"]

    @pytest.mark.anyio
    async def test_unknown_batch_is_404(self, client) -> None:
        resp = await client.post(f"/v1/tenants/{uuid7()}/batches/{uuid7()}/reconcile", json={})
        assert resp.status_code == 404


class TestDisputeEndpoint:
    """POST /v1/tenants/{tenant_id}/disputes/investigate"""

    @pytest.mark.anyio
    async def test_boundary_dispute_is_escalated(self, client, db_session) -> None:
        tenant, rule_set, batch_id = await _calculated_batch(client, db_session)

        resp = await client.post(
            f"/v1/tenants/{tenant}/disputes/investigate",
            json={
                "batch_id": batch_id,
                "entity_external_id": "E2",
                "component_id": "attainment_bonus",
                "category": "tier",
                "amount_disputed": 500,
            },
        )

        assert resp.status_code == 200
        data = resp.json()
        assert data["root_cause"] == "boundary_edge"
        assert data["recommendation"] == "escalate_to_human"
        assert data["component_ids"] == ["attainment_bonus"]
        assert data["signals_recorded"] == 1
        assert data["actions"][0]["agent_id"] == "dispute_triage"
        assert data["actions"][0]["severity"] == "warning"

        signals = await SqlSignalLog(db_session).list_for_tenant(tenant, signal_types=[SignalType.RESOLUTION])
        assert signals[0].signature.startswith(f"{rule_set.rule_set_id}:attainment_bonus:")

    @pytest.mark.anyio
    async def test_divergence_proposes_adjustment(self, client, db_session) -> None:
        tenant, _, batch_id = await _calculated_batch(client, db_session)

        resp = await client.post(
            f"/v1/tenants/{tenant}/disputes/investigate",
            json={
                "batch_id": batch_id,
                "entity_external_id": "E1",
                "component_id": "commission",
                "expectations": [_expect("E1", 250, "commission")],
            },
        )

        data = resp.json()
        assert data["root_cause"] == "data_error"
        assert data["recommendation"] == "approve_adjustment"
        assert data["suggested_adjustment"] == pytest.approx(150.0)

    @pytest.mark.anyio
    async def test_unknown_entity_is_404(self, client, db_session) -> None:
        tenant, _, batch_id = await _calculated_batch(client, db_session)

        resp = await client.post(
            f"/v1/tenants/{tenant}/disputes/investigate",
            json={"batch_id": batch_id, "entity_external_id": "E404"},
        )

        assert resp.status_code == 404


class TestNuclearClearEndpoint:
    """POST /v1/tenants/{tenant_id}/patterns/nuclear-clear"""

    @pytest.mark.anyio
    async def test_clear_by_prefix_then_all(self, client, db_session) -> None:
        tenant, rule_set, _ = await _calculated_batch(client, db_session)
        url = f"/v1/tenants/{tenant}/patterns/nuclear-clear"

        resp = await client.post(url, json={"pattern_prefix": f"{rule_set.rule_set_id}:commission:"})
        assert resp.status_code == 200
        assert resp.json() == {
            "tenant_id": str(tenant),
            "pattern_prefix": f"{rule_set.rule_set_id}:commission:",
            "deleted": 1,
        }

        resp = await client.post(url, json={})
        assert resp.json()["deleted"] == 1
        assert await SqlPatternStore(db_session).get_all(tenant) == {}
