"""Agent memory — the single priors object every agent reads.

``load_priors_for_agent`` assembles, in one pass, the tenant's pattern
density (with reconciliation and resolution signals folded in), the
foundational and domain priors, and the recent signal history. The result is
frozen: agents read it, they never mutate it. New evidence goes to the
signal log and shows up on the next load.
"""

from __future__ import annotations

import logging
from uuid import UUID

from pydantic import Field

from incentiveos.engine.signature import PatternSignature
from incentiveos.flywheel.density import (
    DensityPolicy,
    DensitySnapshot,
    EmaDensityPolicy,
    cleared_prefixes,
    fold_signals,
)
from incentiveos.flywheel.models import Pattern, PriorEntry, Signal
from incentiveos.flywheel.priors import (
    COLD_START_DISCOUNT,
    discount,
    domain_entries,
    foundational_entries,
)
from incentiveos.flywheel.stores import PatternStore, PriorStore, SignalLog
from incentiveos.models.common import AgentType, IncentiveOSBase, SignalType

logger = logging.getLogger(__name__)

DEFAULT_SIGNAL_HISTORY_LIMIT = 500
_FOLDED_SIGNAL_TYPES = (SignalType.RECONCILIATION, SignalType.RESOLUTION)


class SignalHistory(IncentiveOSBase, frozen=True):
    """Recent signals grouped by type, oldest first."""

    field_mapping: list[Signal] = Field(default_factory=list)
    interpretation: list[Signal] = Field(default_factory=list)
    reconciliation: list[Signal] = Field(default_factory=list)
    resolution: list[Signal] = Field(default_factory=list)
    density: list[Signal] = Field(default_factory=list)

    @classmethod
    def from_signals(cls, signals: list[Signal]) -> SignalHistory:
        grouped: dict[str, list[Signal]] = {t.value: [] for t in SignalType}
        for signal in signals:
            grouped[signal.signal_type.value].append(signal)
        return cls(**grouped)

    @property
    def total(self) -> int:
        return (
            len(self.field_mapping) + len(self.interpretation)
            + len(self.reconciliation) + len(self.resolution) + len(self.density)
        )


class AgentPriors(IncentiveOSBase, frozen=True):
    """Frozen snapshot of everything an agent knows for one tenant."""

    tenant_id: UUID
    agent_type: AgentType
    domain_id: str | None = None
    patterns: dict[str, Pattern] = Field(default_factory=dict)
    foundational_priors: dict[str, PriorEntry] = Field(default_factory=dict)
    domain_priors: dict[str, PriorEntry] = Field(default_factory=dict)
    signal_history: SignalHistory = Field(default_factory=SignalHistory)
    cold_start: bool = False
    cleared_prefixes: tuple[str, ...] = ()

    @property
    def tenant_density(self) -> dict[str, float]:
        return {key: p.density for key, p in self.patterns.items()}

    def prior_for(self, structural_key: str) -> PriorEntry | None:
        """Domain prior when one exists, else the foundational prior."""
        return self.domain_priors.get(structural_key) or self.foundational_priors.get(structural_key)

    def effective_density(self, signature: PatternSignature) -> float:
        """Tenant density, or the cold-start-discounted prior, or 0.

        Keys under a nuclear clear that have not been relearned start at 0
        rather than at the prior.
        """
        pattern = self.patterns.get(signature.key)
        if pattern is not None:
            return pattern.density
        if self.was_cleared(signature.key):
            return 0.0
        prior = self.prior_for(signature.structural_key)
        if prior is None:
            return 0.0
        return discount(prior).confidence

    def was_cleared(self, key: str) -> bool:
        return any(key.startswith(prefix) for prefix in self.cleared_prefixes)

    def density_snapshot(self) -> DensitySnapshot:
        return DensitySnapshot(tenant_id=self.tenant_id, patterns=dict(self.patterns))


class AgentMemory:
    """Loads ``AgentPriors`` and records new signals.

    Parameters
    ----------
    patterns, signals, priors:
        Backing stores.
    policy:
        Density policy used to fold signals into density.
    signal_history_limit:
        Most recent signals included in ``signal_history``.
    """

    def __init__(
        self,
        patterns: PatternStore,
        signals: SignalLog,
        priors: PriorStore,
        policy: DensityPolicy | None = None,
        signal_history_limit: int = DEFAULT_SIGNAL_HISTORY_LIMIT,
    ) -> None:
        self._patterns = patterns
        self._signals = signals
        self._priors = priors
        self._policy = policy or EmaDensityPolicy()
        self._signal_history_limit = signal_history_limit

    async def load_priors_for_agent(
        self,
        tenant_id: UUID,
        agent_type: AgentType,
        domain_id: str | None = None,
    ) -> AgentPriors:
        patterns = await self._patterns.get_all(tenant_id)

        if patterns:
            since = min(p.last_updated for p in patterns.values())
            pending = await self._signals.list_for_tenant(
                tenant_id, since=since, signal_types=_FOLDED_SIGNAL_TYPES,
            )
            if pending:
                patterns = {
                    key: fold_signals(pattern, pending, self._policy)
                    for key, pattern in patterns.items()
                }

        recent = await self._signals.list_for_tenant(tenant_id, limit=self._signal_history_limit)
        cleared = cleared_prefixes(
            await self._signals.list_for_tenant(tenant_id, signal_types=(SignalType.DENSITY,)),
        )
        foundational = foundational_entries(await self._priors.get_foundational())
        domain = domain_entries(await self._priors.get_domain(domain_id)) if domain_id else {}

        cold_start = not patterns
        if cold_start:
            foundational = {key: discount(entry) for key, entry in foundational.items()}
            domain = {key: discount(entry) for key, entry in domain.items()}
            logger.info(
                "Cold start for tenant %s: priors discounted by %.2f", tenant_id, COLD_START_DISCOUNT,
            )

        return AgentPriors(
            tenant_id=tenant_id,
            agent_type=agent_type,
            domain_id=domain_id,
            patterns=patterns,
            foundational_priors=foundational,
            domain_priors=domain,
            signal_history=SignalHistory.from_signals(recent),
            cold_start=cold_start,
            cleared_prefixes=cleared,
        )

    async def record_signals(self, signals: list[Signal]) -> None:
        await self._signals.append_many(signals)
