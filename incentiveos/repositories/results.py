"""Calculation output repositories — batches and immutable result rows."""

from collections.abc import Sequence
from typing import Any
from uuid import UUID

from sqlalchemy import insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from incentiveos.db.tables import CalculationBatchRow, CalculationResultRow
from incentiveos.models.common import BatchStatus, ResultStatus, utc_now
from incentiveos.models.result import CalculationResult, ComponentOutcome


def result_from_row(row: CalculationResultRow) -> CalculationResult:
    return CalculationResult(
        result_id=row.result_id,
        batch_id=row.batch_id,
        tenant_id=row.tenant_id,
        entity_id=row.entity_id,
        period_id=row.period_id,
        rule_set_id=row.rule_set_id,
        variant_id=row.variant_id,
        components=[ComponentOutcome(**c) for c in row.components],
        total_payout=row.total_payout,
        status=ResultStatus(row.status),
        partial=row.partial,
        trace=row.trace,
        created_at=row.created_at,
    )


class CalculationBatchRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, *, batch_id: UUID, tenant_id: UUID, period_id: UUID,
                     rule_set_id: UUID, status: BatchStatus = BatchStatus.RUNNING) -> CalculationBatchRow:
        now = utc_now()
        row = CalculationBatchRow(
            batch_id=batch_id, tenant_id=tenant_id, period_id=period_id,
            rule_set_id=rule_set_id, status=status.value,
            entity_count=0, total_payout=0.0, summary={},
            created_at=now, updated_at=now,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get(self, batch_id: UUID) -> CalculationBatchRow | None:
        return await self._session.get(CalculationBatchRow, batch_id)

    async def list_for_tenant(self, tenant_id: UUID) -> list[CalculationBatchRow]:
        result = await self._session.execute(
            select(CalculationBatchRow)
            .where(CalculationBatchRow.tenant_id == tenant_id)
            .order_by(CalculationBatchRow.created_at)
        )
        return list(result.scalars().all())

    async def finish(self, batch_id: UUID, *, status: BatchStatus, entity_count: int = 0,
                     total_payout: float = 0.0, summary: dict[str, Any] | None = None) -> CalculationBatchRow | None:
        row = await self.get(batch_id)
        if row is not None:
            row.status = status.value
            row.entity_count = entity_count
            row.total_payout = total_payout
            row.summary = summary or {}
            row.updated_at = utc_now()
            await self._session.flush()
        return row


class CalculationResultRepository:
    """Append-only result rows, written in batches."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create_many(self, rows: Sequence[dict[str, Any]]) -> int:
        """Insert a batch of result rows in one statement."""
        if not rows:
            return 0
        await self._session.execute(insert(CalculationResultRow), list(rows))
        return len(rows)

    async def list_for_batch(self, batch_id: UUID, *, limit: int | None = None,
                             offset: int = 0) -> list[CalculationResult]:
        stmt = (
            select(CalculationResultRow)
            .where(CalculationResultRow.batch_id == batch_id)
            .order_by(CalculationResultRow.position)
            .offset(offset)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self._session.execute(stmt)
        return [result_from_row(r) for r in result.scalars().all()]

    async def get_for_entity(self, batch_id: UUID, entity_id: UUID) -> CalculationResult | None:
        result = await self._session.execute(
            select(CalculationResultRow).where(
                CalculationResultRow.batch_id == batch_id,
                CalculationResultRow.entity_id == entity_id,
            )
        )
        row = result.scalar_one_or_none()
        return None if row is None else result_from_row(row)
