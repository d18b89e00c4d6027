"""Domain viability repository — one verdict per (domain, tenant)."""

from datetime import timezone
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from incentiveos.db.tables import DomainViabilityRow
from incentiveos.domain.viability import DomainViabilityRecord, ViabilityScore, ViabilityStore


class SqlViabilityStore(ViabilityStore):
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def _row(self, domain_id: str, tenant_id: UUID) -> DomainViabilityRow | None:
        result = await self._session.execute(
            select(DomainViabilityRow).where(
                DomainViabilityRow.domain_id == domain_id,
                DomainViabilityRow.tenant_id == tenant_id,
            )
        )
        return result.scalar_one_or_none()

    async def get(self, domain_id: str, tenant_id: UUID) -> DomainViabilityRecord | None:
        row = await self._row(domain_id, tenant_id)
        if row is None:
            return None
        evaluated_at = row.evaluated_at
        if evaluated_at.tzinfo is None:
            evaluated_at = evaluated_at.replace(tzinfo=timezone.utc)
        return DomainViabilityRecord(
            domain_id=row.domain_id,
            tenant_id=row.tenant_id,
            score=ViabilityScore(row.score),
            gates=row.gates,
            missing_primitives=row.missing_primitives,
            evaluated_at=evaluated_at,
        )

    async def save(self, record: DomainViabilityRecord) -> None:
        row = await self._row(record.domain_id, record.tenant_id)
        if row is None:
            row = DomainViabilityRow(domain_id=record.domain_id, tenant_id=record.tenant_id)
            self._session.add(row)
        row.score = record.score.value
        row.gates = record.gates
        row.missing_primitives = record.missing_primitives
        row.evaluated_at = record.evaluated_at
        await self._session.flush()
