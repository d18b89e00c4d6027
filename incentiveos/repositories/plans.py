"""Plan repositories — rule sets.

Variants and components are stored as one JSON document per rule set
version and validated into ``RuleSet`` models on read.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from incentiveos.db.tables import RuleSetRow
from incentiveos.models.common import RuleSetStatus, utc_now
from incentiveos.models.plan import RuleSet


class AmbiguousRuleSetError(ValueError):
    """More than one active rule set applies to the same date."""


def _to_model(row: RuleSetRow) -> RuleSet:
    return RuleSet(
        rule_set_id=row.rule_set_id,
        tenant_id=row.tenant_id,
        name=row.name,
        version=row.version,
        status=RuleSetStatus(row.status),
        domain_id=row.domain_id,
        effective_from=row.effective_from,
        effective_to=row.effective_to,
        variants=row.variants,
        created_at=row.created_at,
    )


class RuleSetRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, rule_set: RuleSet) -> RuleSetRow:
        now = utc_now()
        row = RuleSetRow(
            rule_set_id=rule_set.rule_set_id,
            tenant_id=rule_set.tenant_id,
            name=rule_set.name,
            version=rule_set.version,
            status=rule_set.status.value,
            domain_id=rule_set.domain_id,
            effective_from=rule_set.effective_from,
            effective_to=rule_set.effective_to,
            variants=[v.model_dump(mode="json") for v in rule_set.variants],
            created_at=now,
            updated_at=now,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get(self, rule_set_id: UUID) -> RuleSetRow | None:
        return await self._session.get(RuleSetRow, rule_set_id)

    async def get_model(self, tenant_id: UUID, rule_set_id: UUID) -> RuleSet | None:
        row = await self.get(rule_set_id)
        if row is None or row.tenant_id != tenant_id:
            return None
        return _to_model(row)

    async def list_for_tenant(self, tenant_id: UUID) -> list[RuleSetRow]:
        result = await self._session.execute(
            select(RuleSetRow)
            .where(RuleSetRow.tenant_id == tenant_id)
            .order_by(RuleSetRow.name, RuleSetRow.version)
        )
        return list(result.scalars().all())

    async def update_status(self, rule_set_id: UUID, status: RuleSetStatus) -> RuleSetRow | None:
        row = await self.get(rule_set_id)
        if row is not None:
            row.status = status.value
            row.updated_at = utc_now()
            await self._session.flush()
        return row

    async def get_applicable(self, tenant_id: UUID, on_date: date) -> RuleSet | None:
        """The single active rule set effective on ``on_date``.

        Raises:
            AmbiguousRuleSetError: If more than one active rule set applies.
        """
        result = await self._session.execute(
            select(RuleSetRow).where(
                RuleSetRow.tenant_id == tenant_id,
                RuleSetRow.status == RuleSetStatus.ACTIVE.value,
            )
        )
        candidates = [_to_model(r) for r in result.scalars().all()]
        applicable = [r for r in candidates if r.is_effective_on(on_date)]
        if len(applicable) > 1:
            ids = ", ".join(str(r.rule_set_id) for r in applicable)
            msg = f"{len(applicable)} active rule sets apply on {on_date}: {ids}"
            raise AmbiguousRuleSetError(msg)
        return applicable[0] if applicable else None
