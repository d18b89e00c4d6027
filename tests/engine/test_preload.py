"""Tests for the preloader: constant source calls and window indexing."""

from collections.abc import Sequence
from datetime import date
from uuid import UUID

import pytest
from uuid_extensions import uuid7

from incentiveos.engine.preload import PreloadError, Preloader, numeric_metrics
from incentiveos.models.data import CommittedRow, Entity, Period


class _CountingSource:
    """In-memory data source that counts calls."""

    def __init__(self, entities: list[Entity], rows: list[CommittedRow]) -> None:
        self.entities = entities
        self.rows = rows
        self.entity_calls = 0
        self.row_calls = 0

    async def load_entities(self, tenant_id: UUID) -> list[Entity]:
        self.entity_calls += 1
        return [e for e in self.entities if e.tenant_id == tenant_id]

    async def load_rows(self, tenant_id: UUID, period_ids: Sequence[UUID]) -> list[CommittedRow]:
        self.row_calls += 1
        return [r for r in self.rows if r.tenant_id == tenant_id and r.period_id in period_ids]


class _FailingSource:
    async def load_entities(self, tenant_id: UUID) -> list[Entity]:
        raise ConnectionError("database unavailable")

    async def load_rows(self, tenant_id: UUID, period_ids: Sequence[UUID]) -> list[CommittedRow]:
        return []


def _make_period(tenant_id: UUID, month: int) -> Period:
    return Period(
        tenant_id=tenant_id,
        canonical_key=f"2026-{month:02d}",
        start_date=date(2026, month, 1),
        end_date=date(2026, month, 28),
    )


def _make_source(tenant_id: UUID, period: Period, entity_count: int, rows_per_entity: int) -> _CountingSource:
    entities = [
        Entity(tenant_id=tenant_id, external_id=f"E{i:05d}", attributes={"store": f"S{i % 3}"})
        for i in range(entity_count)
    ]
    rows = [
        CommittedRow(tenant_id=tenant_id, entity_id=e.entity_id, period_id=period.period_id,
                     row_data={"sales": 10, "store": e.attributes["store"]})
        for e in entities
        for _ in range(rows_per_entity)
    ]
    return _CountingSource(entities, rows)


class TestPreloader:
    """Preload issues a constant number of source calls."""

    @pytest.mark.anyio
    @pytest.mark.parametrize(("entity_count", "rows_per_entity"), [(10, 1), (2000, 10)])
    async def test_call_count_independent_of_volume(self, entity_count: int, rows_per_entity: int) -> None:
        tenant_id = uuid7()
        period = _make_period(tenant_id, 3)
        source = _make_source(tenant_id, period, entity_count, rows_per_entity)

        window = await Preloader(source).preload(tenant_id=tenant_id, period=period)

        assert source.entity_calls == 1
        assert source.row_calls == 1
        assert len(window.entity_ids) == entity_count
        assert window.row_count == entity_count * rows_per_entity

    @pytest.mark.anyio
    async def test_entities_ordered_by_external_id(self) -> None:
        tenant_id = uuid7()
        period = _make_period(tenant_id, 3)
        source = _make_source(tenant_id, period, 12, 1)
        source.entities.reverse()

        window = await Preloader(source).preload(tenant_id=tenant_id, period=period)

        external = [window.entities[eid].external_id for eid in window.entity_ids]
        assert external == sorted(external)

    @pytest.mark.anyio
    async def test_history_is_oldest_first_with_gaps(self) -> None:
        tenant_id = uuid7()
        jan, feb, mar = (_make_period(tenant_id, m) for m in (1, 2, 3))
        entity = Entity(tenant_id=tenant_id, external_id="E1")
        rows = [
            CommittedRow(tenant_id=tenant_id, entity_id=entity.entity_id, period_id=jan.period_id,
                         row_data={"sales": 90}),
            CommittedRow(tenant_id=tenant_id, entity_id=entity.entity_id, period_id=mar.period_id,
                         row_data={"sales": 100}),
        ]
        source = _CountingSource([entity], rows)

        window = await Preloader(source).preload(tenant_id=tenant_id, period=mar, prior_periods=[jan, feb])

        assert window.history_for(entity.entity_id) == [{"sales": 90.0}, {}]
        assert window.metrics_for(entity.entity_id) == {"sales": 100.0}
        assert window.prior_period_count == 2

    @pytest.mark.anyio
    async def test_missing_entity_metrics_are_not_shared(self) -> None:
        tenant_id = uuid7()
        window = await Preloader(_CountingSource([], [])).preload(
            tenant_id=tenant_id, period=_make_period(tenant_id, 3),
        )

        first = window.metrics_for(uuid7())
        first["sales"] = 1.0

        assert window.metrics_for(uuid7()) == {}

    @pytest.mark.anyio
    async def test_group_rows_include_unattributed_rows(self) -> None:
        tenant_id = uuid7()
        period = _make_period(tenant_id, 3)
        entity = Entity(tenant_id=tenant_id, external_id="E1", attributes={"store": "S1"})
        rows = [
            CommittedRow(tenant_id=tenant_id, entity_id=entity.entity_id, period_id=period.period_id,
                         row_data={"sales": 10}),
            CommittedRow(tenant_id=tenant_id, entity_id=None, period_id=period.period_id,
                         row_data={"store_sales": 500, "store": "S1"}),
        ]
        window = await Preloader(_CountingSource([entity], rows)).preload(
            tenant_id=tenant_id, period=period, group_attributes=["store"],
        )

        assert window.entity_ids == (entity.entity_id,)
        assert len(window.rows_for_group("store", "S1")) == 2
        assert window.group_value(entity.entity_id, "store") == "S1"

    @pytest.mark.anyio
    async def test_source_failure_is_wrapped(self) -> None:
        tenant_id = uuid7()
        with pytest.raises(PreloadError, match="database unavailable"):
            await Preloader(_FailingSource()).preload(tenant_id=tenant_id, period=_make_period(tenant_id, 3))


class TestNumericMetrics:
    def test_sums_numeric_fields_only(self) -> None:
        rows = [{"sales": 10, "region": "N", "active": True}, {"sales": 5.5}]
        assert numeric_metrics(rows) == {"sales": 15.5}
