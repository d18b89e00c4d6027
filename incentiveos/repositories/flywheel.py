"""Flywheel repositories — SQLAlchemy-backed pattern, signal, and prior stores.

Implement the store ABCs from ``incentiveos.flywheel.stores`` over the
``patterns``, ``signals``, ``foundational_patterns`` and ``domain_patterns``
tables. Like every repository they flush but never commit.
"""

from collections.abc import Iterable
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from incentiveos.db.tables import DomainPatternRow, FoundationalPatternRow, PatternRow, SignalRow
from incentiveos.flywheel.models import DomainPattern, FoundationalPattern, Pattern, Signal
from incentiveos.flywheel.stores import PatternStore, PriorStore, SignalLog
from incentiveos.models.common import AgentType, SignalType


def _as_utc(value: datetime) -> datetime:
    """SQLite drops tzinfo; stored timestamps are always UTC."""
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------


class SqlPatternStore(PatternStore):
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def _rows(self, tenant_id: UUID) -> dict[str, PatternRow]:
        result = await self._session.execute(select(PatternRow).where(PatternRow.tenant_id == tenant_id))
        return {row.signature: row for row in result.scalars().all()}

    async def get_all(self, tenant_id: UUID) -> dict[str, Pattern]:
        return {
            signature: Pattern(
                tenant_id=row.tenant_id,
                signature=row.signature,
                density=row.density,
                sample_count=row.sample_count,
                agreement_count=row.agreement_count,
                learned_behaviors=row.learned_behaviors,
                last_updated=_as_utc(row.last_updated),
            )
            for signature, row in (await self._rows(tenant_id)).items()
        }

    async def upsert_many(self, patterns: list[Pattern]) -> None:
        by_tenant: dict[UUID, list[Pattern]] = {}
        for pattern in patterns:
            by_tenant.setdefault(pattern.tenant_id, []).append(pattern)
        for tenant_id, group in by_tenant.items():
            existing = await self._rows(tenant_id)
            for pattern in group:
                row = existing.get(pattern.signature)
                if row is None:
                    self._session.add(PatternRow(
                        tenant_id=tenant_id,
                        signature=pattern.signature,
                        density=pattern.density,
                        sample_count=pattern.sample_count,
                        agreement_count=pattern.agreement_count,
                        learned_behaviors=pattern.learned_behaviors,
                        last_updated=pattern.last_updated,
                    ))
                else:
                    row.density = pattern.density
                    row.sample_count = pattern.sample_count
                    row.agreement_count = pattern.agreement_count
                    row.learned_behaviors = pattern.learned_behaviors
                    row.last_updated = pattern.last_updated
        await self._session.flush()

    async def delete(self, tenant_id: UUID, prefix: str | None = None) -> int:
        stmt = select(PatternRow).where(PatternRow.tenant_id == tenant_id)
        if prefix is not None:
            stmt = stmt.where(PatternRow.signature.startswith(prefix, autoescape=True))
        rows = (await self._session.execute(stmt)).scalars().all()
        for row in rows:
            await self._session.delete(row)
        await self._session.flush()
        return len(rows)


# ---------------------------------------------------------------------------
# Signals
# ---------------------------------------------------------------------------


def _signal_from_row(row: SignalRow) -> Signal:
    return Signal(
        signal_id=row.signal_id,
        tenant_id=row.tenant_id,
        signal_type=SignalType(row.signal_type),
        agent_type=AgentType(row.agent_type),
        signature=row.signature,
        payload=row.payload,
        confidence=row.confidence,
        batch_id=row.batch_id,
        created_at=_as_utc(row.created_at),
    )


class SqlSignalLog(SignalLog):
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def append(self, signal: Signal) -> None:
        self._session.add(SignalRow(
            signal_id=signal.signal_id,
            tenant_id=signal.tenant_id,
            signal_type=signal.signal_type.value,
            agent_type=signal.agent_type.value,
            signature=signal.signature,
            payload=signal.payload,
            confidence=signal.confidence,
            batch_id=signal.batch_id,
            created_at=signal.created_at,
        ))
        await self._session.flush()

    async def list_for_tenant(
        self,
        tenant_id: UUID,
        *,
        limit: int | None = None,
        since: datetime | None = None,
        signal_types: Iterable[SignalType] | None = None,
    ) -> list[Signal]:
        stmt = select(SignalRow).where(SignalRow.tenant_id == tenant_id)
        if since is not None:
            stmt = stmt.where(SignalRow.created_at > since)
        if signal_types is not None:
            stmt = stmt.where(SignalRow.signal_type.in_([t.value for t in signal_types]))
        stmt = stmt.order_by(SignalRow.created_at.desc(), SignalRow.signal_id.desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self._session.execute(stmt)
        return [_signal_from_row(r) for r in reversed(result.scalars().all())]


# ---------------------------------------------------------------------------
# Priors
# ---------------------------------------------------------------------------


class SqlPriorStore(PriorStore):
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_foundational(self) -> dict[str, FoundationalPattern]:
        result = await self._session.execute(select(FoundationalPatternRow))
        return {
            row.structural_key: FoundationalPattern(
                structural_key=row.structural_key,
                confidence_mean=row.confidence_mean,
                total_executions=row.total_executions,
                tenant_count=row.tenant_count,
                anomaly_rate_mean=row.anomaly_rate_mean,
                learned_behaviors=row.learned_behaviors,
                updated_at=_as_utc(row.updated_at),
            )
            for row in result.scalars().all()
        }

    async def get_domain(self, domain_id: str) -> dict[str, DomainPattern]:
        result = await self._session.execute(
            select(DomainPatternRow).where(DomainPatternRow.domain_id == domain_id)
        )
        return {
            row.structural_key: DomainPattern(
                structural_key=row.structural_key,
                domain_id=row.domain_id,
                confidence_mean=row.confidence_mean,
                total_executions=row.total_executions,
                tenant_count=row.tenant_count,
                learned_behaviors=row.learned_behaviors,
                updated_at=_as_utc(row.updated_at),
            )
            for row in result.scalars().all()
        }

    async def upsert_foundational(self, patterns: list[FoundationalPattern]) -> None:
        for pattern in patterns:
            row = await self._session.get(FoundationalPatternRow, pattern.structural_key)
            if row is None:
                row = FoundationalPatternRow(structural_key=pattern.structural_key)
                self._session.add(row)
            row.confidence_mean = pattern.confidence_mean
            row.total_executions = pattern.total_executions
            row.tenant_count = pattern.tenant_count
            row.anomaly_rate_mean = pattern.anomaly_rate_mean
            row.learned_behaviors = pattern.learned_behaviors
            row.updated_at = pattern.updated_at
        await self._session.flush()

    async def upsert_domain(self, patterns: list[DomainPattern]) -> None:
        for pattern in patterns:
            result = await self._session.execute(
                select(DomainPatternRow).where(
                    DomainPatternRow.domain_id == pattern.domain_id,
                    DomainPatternRow.structural_key == pattern.structural_key,
                )
            )
            row = result.scalar_one_or_none()
            if row is None:
                row = DomainPatternRow(domain_id=pattern.domain_id, structural_key=pattern.structural_key)
                self._session.add(row)
            row.confidence_mean = pattern.confidence_mean
            row.total_executions = pattern.total_executions
            row.tenant_count = pattern.tenant_count
            row.learned_behaviors = pattern.learned_behaviors
            row.updated_at = pattern.updated_at
        await self._session.flush()
