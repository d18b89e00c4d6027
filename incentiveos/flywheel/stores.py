"""Store ABCs and in-memory implementations for the Knowledge Flywheel.

Provides three abstract store contracts:
- ``PatternStore`` for tenant pattern density (read once per run, merged
  once after it).
- ``SignalLog`` for the append-only training signal log.
- ``PriorStore`` for anonymised foundational and domain priors.

In-memory implementations are provided for testing. Production deployments
use the SQLAlchemy-backed stores in ``incentiveos.repositories.flywheel``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime
from uuid import UUID

from incentiveos.flywheel.models import DomainPattern, FoundationalPattern, Pattern, Signal
from incentiveos.models.common import SignalType


# ---------------------------------------------------------------------------
# Pattern density
# ---------------------------------------------------------------------------


class PatternStore(ABC):
    """ABC for tenant pattern density."""

    @abstractmethod
    async def get_all(self, tenant_id: UUID) -> dict[str, Pattern]: ...

    @abstractmethod
    async def upsert_many(self, patterns: list[Pattern]) -> None: ...

    @abstractmethod
    async def delete(self, tenant_id: UUID, prefix: str | None = None) -> int:
        """Delete the tenant's patterns (optionally by key prefix); return count."""


class InMemoryPatternStore(PatternStore):
    """In-memory implementation for tests."""

    def __init__(self) -> None:
        self._patterns: dict[tuple[UUID, str], Pattern] = {}

    async def get_all(self, tenant_id: UUID) -> dict[str, Pattern]:
        return {sig: p for (tid, sig), p in self._patterns.items() if tid == tenant_id}

    async def upsert_many(self, patterns: list[Pattern]) -> None:
        for pattern in patterns:
            self._patterns[(pattern.tenant_id, pattern.signature)] = pattern

    async def delete(self, tenant_id: UUID, prefix: str | None = None) -> int:
        doomed = [
            key for key in self._patterns
            if key[0] == tenant_id and (prefix is None or key[1].startswith(prefix))
        ]
        for key in doomed:
            del self._patterns[key]
        return len(doomed)


# ---------------------------------------------------------------------------
# Signal log
# ---------------------------------------------------------------------------


class SignalLog(ABC):
    """ABC for the append-only signal log."""

    @abstractmethod
    async def append(self, signal: Signal) -> None: ...

    @abstractmethod
    async def list_for_tenant(
        self,
        tenant_id: UUID,
        *,
        limit: int | None = None,
        since: datetime | None = None,
        signal_types: Iterable[SignalType] | None = None,
    ) -> list[Signal]:
        """Signals oldest first; ``limit`` keeps the most recent ones."""

    async def append_many(self, signals: Iterable[Signal]) -> None:
        for signal in signals:
            await self.append(signal)


class InMemorySignalLog(SignalLog):
    """In-memory implementation for tests."""

    def __init__(self) -> None:
        self._items: list[Signal] = []

    async def append(self, signal: Signal) -> None:
        self._items.append(signal)

    async def list_for_tenant(
        self,
        tenant_id: UUID,
        *,
        limit: int | None = None,
        since: datetime | None = None,
        signal_types: Iterable[SignalType] | None = None,
    ) -> list[Signal]:
        types = set(signal_types) if signal_types is not None else None
        items = [
            s for s in self._items
            if s.tenant_id == tenant_id
            and (since is None or s.created_at > since)
            and (types is None or s.signal_type in types)
        ]
        items.sort(key=lambda s: s.created_at)
        if limit is not None:
            items = items[-limit:]
        return items


# ---------------------------------------------------------------------------
# Cross-tenant priors
# ---------------------------------------------------------------------------


class PriorStore(ABC):
    """ABC for foundational (all tenants) and domain priors."""

    @abstractmethod
    async def get_foundational(self) -> dict[str, FoundationalPattern]: ...

    @abstractmethod
    async def get_domain(self, domain_id: str) -> dict[str, DomainPattern]: ...

    @abstractmethod
    async def upsert_foundational(self, patterns: list[FoundationalPattern]) -> None: ...

    @abstractmethod
    async def upsert_domain(self, patterns: list[DomainPattern]) -> None: ...


class InMemoryPriorStore(PriorStore):
    """In-memory implementation for tests."""

    def __init__(self) -> None:
        self._foundational: dict[str, FoundationalPattern] = {}
        self._domain: dict[tuple[str, str], DomainPattern] = {}

    async def get_foundational(self) -> dict[str, FoundationalPattern]:
        return dict(self._foundational)

    async def get_domain(self, domain_id: str) -> dict[str, DomainPattern]:
        return {key: p for (did, key), p in self._domain.items() if did == domain_id}

    async def upsert_foundational(self, patterns: list[FoundationalPattern]) -> None:
        for pattern in patterns:
            self._foundational[pattern.structural_key] = pattern

    async def upsert_domain(self, patterns: list[DomainPattern]) -> None:
        for pattern in patterns:
            self._domain[(pattern.domain_id, pattern.structural_key)] = pattern
