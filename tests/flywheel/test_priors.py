"""Tests for cross-tenant prior aggregation and cold-start discounting."""

import pytest
from uuid_extensions import uuid7

from incentiveos.flywheel.density import DensityUpdate
from incentiveos.flywheel.models import PriorEntry
from incentiveos.flywheel.priors import COLD_START_DISCOUNT, PriorAggregator, discount, ema
from incentiveos.flywheel.stores import InMemoryPriorStore

STRUCTURAL = "bounded_lookup_1d:0011223344556677"


def _make_update(before: float | None, after: float, samples: int = 10, agreements: int = 10) -> DensityUpdate:
    return DensityUpdate(
        signature=f"{uuid7()}:bonus:{STRUCTURAL}",
        before=before,
        after=after,
        samples_added=samples,
        agreements_added=agreements,
    )


class TestDiscount:
    """Cold-start scaling."""

    def test_discount_scales_once(self) -> None:
        entry = PriorEntry(confidence=0.9)
        once = discount(entry)
        assert once.confidence == pytest.approx(0.54)
        assert once.discounted
        assert discount(once) is once

    def test_constant(self) -> None:
        assert COLD_START_DISCOUNT == 0.6
        assert ema(0.5, 1.0) == pytest.approx(0.55)


class TestPriorAggregator:
    """Foundational and domain prior aggregation."""

    @pytest.mark.anyio
    async def test_first_aggregation_creates_rows(self) -> None:
        store = InMemoryPriorStore()
        touched = await PriorAggregator(store).aggregate([_make_update(None, 0.8, 10, 8)], "icm")

        assert touched == 1
        row = (await store.get_foundational())[STRUCTURAL]
        assert row.confidence_mean == pytest.approx(0.8)
        assert row.tenant_count == 1
        assert row.total_executions == 10
        assert row.anomaly_rate_mean == pytest.approx(0.2)
        domain = (await store.get_domain("icm"))[STRUCTURAL]
        assert domain.tenant_count == 1
        assert await store.get_domain("rebate") == {}

    @pytest.mark.anyio
    async def test_tenant_counted_only_on_first_run(self) -> None:
        store = InMemoryPriorStore()
        aggregator = PriorAggregator(store)
        await aggregator.aggregate([_make_update(None, 0.5)], "icm")
        await aggregator.aggregate([_make_update(0.5, 1.0)], "icm")
        await aggregator.aggregate([_make_update(None, 1.0)], "icm")

        row = (await store.get_foundational())[STRUCTURAL]
        assert row.tenant_count == 2
        assert row.total_executions == 30
        assert row.confidence_mean == pytest.approx(ema(ema(0.5, 1.0), 1.0))

    @pytest.mark.anyio
    async def test_no_tenant_data_crosses_boundary(self) -> None:
        store = InMemoryPriorStore()
        update = _make_update(None, 0.7)
        await PriorAggregator(store).aggregate([update], None)

        row = (await store.get_foundational())[STRUCTURAL]
        dumped = row.model_dump_json()
        assert update.signature.split(":")[0] not in dumped
        assert "tenant_id" not in row.model_dump()

    @pytest.mark.anyio
    async def test_empty_updates(self) -> None:
        assert await PriorAggregator(InMemoryPriorStore()).aggregate([], "icm") == 0
