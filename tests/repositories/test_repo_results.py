"""Tests for calculation batch and result repositories."""

from typing import Any
from uuid import UUID

import pytest
from uuid_extensions import uuid7

from incentiveos.models.common import BatchStatus, utc_now
from incentiveos.repositories.results import CalculationBatchRepository, CalculationResultRepository


def _make_row(batch_id: UUID, tenant_id: UUID, position: int, total: float) -> dict[str, Any]:
    return {
        "result_id": uuid7(),
        "batch_id": batch_id,
        "tenant_id": tenant_id,
        "position": position,
        "entity_id": uuid7(),
        "period_id": uuid7(),
        "rule_set_id": uuid7(),
        "variant_id": "default",
        "components": [{"component_id": "bonus", "name": "Bonus", "order": 1, "value": total}],
        "total_payout": total,
        "status": "success",
        "partial": False,
        "trace": [{"component_id": "bonus", "mode": "light_trace", "output": total, "gap": None}],
        "created_at": utc_now(),
    }


class TestCalculationBatchRepository:
    @pytest.mark.anyio
    async def test_create_finish_and_list(self, db_session) -> None:
        repo = CalculationBatchRepository(db_session)
        tenant = uuid7()
        batch_id = uuid7()
        await repo.create(batch_id=batch_id, tenant_id=tenant, period_id=uuid7(), rule_set_id=uuid7())

        row = await repo.finish(
            batch_id, status=BatchStatus.COMPLETED, entity_count=3, total_payout=42.0,
            summary={"modes": {"silent": 1}},
        )

        assert row is not None
        assert (row.status, row.entity_count, row.total_payout) == ("COMPLETED", 3, 42.0)
        assert [b.batch_id for b in await repo.list_for_tenant(tenant)] == [batch_id]
        assert await repo.finish(uuid7(), status=BatchStatus.FAILED) is None


class TestCalculationResultRepository:
    @pytest.mark.anyio
    async def test_batched_insert_keeps_position_order(self, db_session) -> None:
        repo = CalculationResultRepository(db_session)
        tenant, batch_id = uuid7(), uuid7()
        rows = [_make_row(batch_id, tenant, i, float(i * 10)) for i in range(5)]

        assert await repo.create_many(list(reversed(rows))) == 5
        assert await repo.create_many([]) == 0

        results = await repo.list_for_batch(batch_id)
        assert [r.total_payout for r in results] == [0.0, 10.0, 20.0, 30.0, 40.0]
        page = await repo.list_for_batch(batch_id, limit=2, offset=1)
        assert [r.total_payout for r in page] == [10.0, 20.0]
        assert results[1].components[0].value == 10.0

    @pytest.mark.anyio
    async def test_get_for_entity(self, db_session) -> None:
        repo = CalculationResultRepository(db_session)
        tenant, batch_id = uuid7(), uuid7()
        row = _make_row(batch_id, tenant, 0, 99.0)
        await repo.create_many([row])

        result = await repo.get_for_entity(batch_id, row["entity_id"])

        assert result is not None and result.total_payout == 99.0
        assert result.trace[0]["mode"] == "light_trace"
        assert await repo.get_for_entity(batch_id, uuid7()) is None
