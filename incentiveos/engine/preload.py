"""Preloaded performance window — everything the executor reads, in memory.

The preloader issues a fixed number of data-source calls per run (one for
entities, one for committed rows across the current and prior periods),
independent of how many entities or rows there are. The executor never
sees the data source.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol
from uuid import UUID

from incentiveos.models.data import CommittedRow, Entity, Period

logger = logging.getLogger(__name__)


class PreloadError(RuntimeError):
    """Infrastructure failure while loading the performance window. Fatal."""


class PerformanceDataSource(Protocol):
    """Read side of committed performance data."""

    async def load_entities(self, tenant_id: UUID) -> list[Entity]: ...

    async def load_rows(self, tenant_id: UUID, period_ids: Sequence[UUID]) -> list[CommittedRow]: ...


def numeric_metrics(rows: Iterable[dict[str, Any]]) -> dict[str, float]:
    """Sum every numeric field across rows. Non-numeric fields are ignored."""
    totals: dict[str, float] = {}
    for row in rows:
        for key, value in row.items():
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                continue
            totals[key] = totals.get(key, 0.0) + float(value)
    return totals


@dataclass(frozen=True)
class PreloadedWindow:
    """Current-period data plus history, indexed for per-entity lookup.

    ``history[entity_id]`` holds one metrics dict per prior period, oldest
    first; periods where the entity has no rows contribute an empty dict.
    """

    tenant_id: UUID
    period_id: UUID
    entity_ids: tuple[UUID, ...]
    entities: dict[UUID, Entity]
    rows: dict[UUID, list[dict[str, Any]]]
    metrics: dict[UUID, dict[str, float]]
    history: dict[UUID, list[dict[str, float]]]
    group_rows: dict[tuple[str, str], list[dict[str, Any]]] = field(default_factory=dict)
    prior_period_count: int = 0

    @property
    def row_count(self) -> int:
        return sum(len(r) for r in self.rows.values())

    def attributes(self, entity_id: UUID) -> dict[str, Any]:
        entity = self.entities.get(entity_id)
        return entity.attributes if entity is not None else {}

    def metrics_for(self, entity_id: UUID) -> dict[str, float]:
        return self.metrics.get(entity_id, {})

    def history_for(self, entity_id: UUID) -> list[dict[str, float]]:
        return self.history.get(entity_id, [])

    def group_value(self, entity_id: UUID, attribute: str) -> str | None:
        """Entity's value for a grouping attribute, from master data or its rows."""
        value = self.attributes(entity_id).get(attribute)
        if value is None:
            for row in self.rows.get(entity_id, []):
                if row.get(attribute) is not None:
                    value = row[attribute]
                    break
        return None if value is None else str(value)

    def rows_for_group(self, attribute: str, value: str) -> list[dict[str, Any]]:
        return self.group_rows.get((attribute, value), [])


class Preloader:
    """Build a ``PreloadedWindow`` with a constant number of source calls."""

    def __init__(self, source: PerformanceDataSource) -> None:
        self._source = source

    async def preload(
        self,
        *,
        tenant_id: UUID,
        period: Period,
        prior_periods: Sequence[Period] = (),
        group_attributes: Iterable[str] = (),
    ) -> PreloadedWindow:
        """Load entities and rows for the current and prior periods.

        Args:
            prior_periods: Periods before ``period``, oldest first.
            group_attributes: Row/entity attributes to index for group aggregation.

        Raises:
            PreloadError: If the data source fails.
        """
        period_ids = [p.period_id for p in prior_periods] + [period.period_id]
        try:
            entities = await self._source.load_entities(tenant_id)
            committed = await self._source.load_rows(tenant_id, period_ids)
        except Exception as exc:
            raise PreloadError(f"failed to preload period {period.canonical_key}: {exc}") from exc

        entity_map = {e.entity_id: e for e in entities}
        prior_index = {p.period_id: i for i, p in enumerate(prior_periods)}

        current_rows: dict[UUID, list[dict[str, Any]]] = defaultdict(list)
        prior_rows: dict[UUID, list[list[dict[str, Any]]]] = defaultdict(
            lambda: [[] for _ in prior_periods]
        )
        group_rows: dict[tuple[str, str], list[dict[str, Any]]] = defaultdict(list)
        attributes = tuple(sorted(set(group_attributes)))

        for row in committed:
            if row.period_id == period.period_id:
                if row.entity_id is not None:
                    current_rows[row.entity_id].append(row.row_data)
                for attribute in attributes:
                    value = row.row_data.get(attribute)
                    if value is None and row.entity_id in entity_map:
                        value = entity_map[row.entity_id].attributes.get(attribute)
                    if value is not None:
                        group_rows[(attribute, str(value))].append(row.row_data)
            elif row.entity_id is not None and row.period_id in prior_index:
                prior_rows[row.entity_id][prior_index[row.period_id]].append(row.row_data)

        def _sort_key(entity_id: UUID) -> tuple[str, str]:
            entity = entity_map.get(entity_id)
            return (entity.external_id if entity else "", str(entity_id))

        entity_ids = tuple(sorted(current_rows, key=_sort_key))
        window = PreloadedWindow(
            tenant_id=tenant_id,
            period_id=period.period_id,
            entity_ids=entity_ids,
            entities=entity_map,
            rows=dict(current_rows),
            metrics={eid: numeric_metrics(current_rows[eid]) for eid in entity_ids},
            history={
                eid: [numeric_metrics(rows) for rows in prior_rows[eid]]
                for eid in entity_ids
                if eid in prior_rows
            },
            group_rows=dict(group_rows),
            prior_period_count=len(prior_periods),
        )
        logger.info(
            "Preloaded %d entities, %d rows, %d prior periods for period %s",
            len(entity_ids), len(committed), len(prior_periods), period.canonical_key,
        )
        return window
