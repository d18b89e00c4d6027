"""Performance data repositories — entities, periods, committed rows.

``SqlPerformanceDataSource`` is the production implementation of the
preloader's data-source protocol: one query for entities, one for rows.
"""

from collections.abc import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from incentiveos.db.tables import CommittedDataRow, EntityRow, PeriodRow
from incentiveos.models.common import EntityType, PeriodStatus, utc_now
from incentiveos.models.data import CommittedRow, Entity, Period


def entity_from_row(row: EntityRow) -> Entity:
    return Entity(
        entity_id=row.entity_id,
        tenant_id=row.tenant_id,
        external_id=row.external_id,
        display_name=row.display_name,
        entity_type=EntityType(row.entity_type),
        attributes=row.attributes,
        parent_entity_id=row.parent_entity_id,
    )


def period_from_row(row: PeriodRow) -> Period:
    return Period(
        period_id=row.period_id,
        tenant_id=row.tenant_id,
        canonical_key=row.canonical_key,
        start_date=row.start_date,
        end_date=row.end_date,
        status=PeriodStatus(row.status),
    )


class EntityRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, entity: Entity) -> EntityRow:
        row = EntityRow(
            entity_id=entity.entity_id,
            tenant_id=entity.tenant_id,
            external_id=entity.external_id,
            display_name=entity.display_name,
            entity_type=entity.entity_type.value,
            attributes=entity.attributes,
            parent_entity_id=entity.parent_entity_id,
            created_at=utc_now(),
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get(self, entity_id: UUID) -> EntityRow | None:
        return await self._session.get(EntityRow, entity_id)

    async def list_for_tenant(self, tenant_id: UUID) -> list[EntityRow]:
        result = await self._session.execute(
            select(EntityRow)
            .where(EntityRow.tenant_id == tenant_id)
            .order_by(EntityRow.external_id)
        )
        return list(result.scalars().all())

    async def external_ids(self, tenant_id: UUID) -> dict[UUID, str]:
        result = await self._session.execute(
            select(EntityRow.entity_id, EntityRow.external_id).where(EntityRow.tenant_id == tenant_id)
        )
        return {entity_id: external_id for entity_id, external_id in result.all()}


class PeriodRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, period: Period) -> PeriodRow:
        row = PeriodRow(
            period_id=period.period_id,
            tenant_id=period.tenant_id,
            canonical_key=period.canonical_key,
            start_date=period.start_date,
            end_date=period.end_date,
            status=period.status.value,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get(self, period_id: UUID) -> PeriodRow | None:
        return await self._session.get(PeriodRow, period_id)

    async def get_model(self, tenant_id: UUID, period_id: UUID) -> Period | None:
        row = await self.get(period_id)
        if row is None or row.tenant_id != tenant_id:
            return None
        return period_from_row(row)

    async def prior_periods(self, period: Period, count: int) -> list[Period]:
        """Up to ``count`` periods before ``period``, oldest first."""
        if count <= 0:
            return []
        result = await self._session.execute(
            select(PeriodRow)
            .where(
                PeriodRow.tenant_id == period.tenant_id,
                PeriodRow.start_date < period.start_date,
            )
            .order_by(PeriodRow.start_date.desc())
            .limit(count)
        )
        return [period_from_row(r) for r in reversed(result.scalars().all())]

    async def update_status(self, period_id: UUID, status: PeriodStatus) -> PeriodRow | None:
        row = await self.get(period_id)
        if row is not None:
            row.status = status.value
            await self._session.flush()
        return row


class CommittedDataRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create_many(self, rows: Sequence[CommittedRow]) -> int:
        now = utc_now()
        self._session.add_all([
            CommittedDataRow(
                row_id=r.row_id,
                tenant_id=r.tenant_id,
                entity_id=r.entity_id,
                period_id=r.period_id,
                row_data=r.row_data,
                created_at=now,
            )
            for r in rows
        ])
        await self._session.flush()
        return len(rows)

    async def list_for_periods(self, tenant_id: UUID, period_ids: Sequence[UUID]) -> list[CommittedRow]:
        if not period_ids:
            return []
        result = await self._session.execute(
            select(CommittedDataRow)
            .where(
                CommittedDataRow.tenant_id == tenant_id,
                CommittedDataRow.period_id.in_(list(period_ids)),
            )
            .order_by(CommittedDataRow.created_at, CommittedDataRow.row_id)
        )
        return [
            CommittedRow(
                row_id=r.row_id,
                tenant_id=r.tenant_id,
                entity_id=r.entity_id,
                period_id=r.period_id,
                row_data=r.row_data,
                created_at=r.created_at,
            )
            for r in result.scalars().all()
        ]


class SqlPerformanceDataSource:
    """Preloader data source over ``entities`` and ``committed_data``."""

    def __init__(self, session: AsyncSession) -> None:
        self._entities = EntityRepository(session)
        self._rows = CommittedDataRepository(session)

    async def load_entities(self, tenant_id: UUID) -> list[Entity]:
        return [entity_from_row(r) for r in await self._entities.list_for_tenant(tenant_id)]

    async def load_rows(self, tenant_id: UUID, period_ids: Sequence[UUID]) -> list[CommittedRow]:
        return await self._rows.list_for_periods(tenant_id, period_ids)
