"""Pattern density — policy, run snapshot, diff, and merge.

Density is read once at the start of a run into a ``DensitySnapshot`` and
written once after it: the snapshot diffs itself against the run's
observations and the resulting updates are merged into the store in a
single batch. When another writer touched a pattern after the snapshot was
taken, the merge is last-writer-wins and the conflict is logged.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from incentiveos.flywheel.models import Pattern, Signal
from incentiveos.flywheel.stores import PatternStore
from incentiveos.models.common import utc_now

if TYPE_CHECKING:
    from incentiveos.engine.executor import PatternObservation

logger = logging.getLogger(__name__)

NUCLEAR_CLEAR_ACTION = "nuclear_clear"


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------


class DensityPolicy(ABC):
    """How density responds to agreement evidence.

    Implementations must be monotone in the agreement rate and keep the
    result within [0, 1].
    """

    @abstractmethod
    def update(self, density: float, observations: int, agreements: int) -> float: ...


class EmaDensityPolicy(DensityPolicy):
    """Exponential moving average toward the observed agreement rate."""

    def __init__(self, weight: float = 0.1) -> None:
        if not 0.0 < weight <= 1.0:
            msg = f"weight must be in (0, 1], got {weight}."
            raise ValueError(msg)
        self.weight = weight

    def update(self, density: float, observations: int, agreements: int) -> float:
        if observations <= 0:
            return density
        rate = min(max(agreements / observations, 0.0), 1.0)
        updated = density * (1.0 - self.weight) + rate * self.weight
        return min(max(updated, 0.0), 1.0)


def fold_signals(pattern: Pattern, signals: Iterable[Signal], policy: DensityPolicy) -> Pattern:
    """Apply agreement signals recorded after the pattern's last update.

    Signals carry ``agreements`` / ``disagreements`` counts in their payload.
    The returned pattern keeps its ``last_updated`` so folding is repeatable
    until the next run writes the folded value back.
    """
    density = pattern.density
    folded = 0
    for signal in signals:
        if signal.signature != pattern.signature or signal.created_at <= pattern.last_updated:
            continue
        agreements = int(signal.payload.get("agreements", 0))
        disagreements = int(signal.payload.get("disagreements", 0))
        density = policy.update(density, agreements + disagreements, agreements)
        folded += 1
    if folded == 0:
        return pattern
    return pattern.model_copy(update={"density": density})


# ---------------------------------------------------------------------------
# Snapshot / diff / merge
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DensityUpdate:
    signature: str
    before: float | None
    after: float
    samples_added: int
    agreements_added: int
    base_last_updated: datetime | None = None
    learned_behaviors: dict[str, Any] = field(default_factory=dict)

    @property
    def is_new(self) -> bool:
        return self.before is None

    @property
    def anomaly_rate(self) -> float:
        if self.samples_added == 0:
            return 0.0
        return 1.0 - self.agreements_added / self.samples_added


@dataclass(frozen=True)
class DensitySnapshot:
    """Tenant density as read at the start of a run."""

    tenant_id: UUID
    patterns: Mapping[str, Pattern]
    taken_at: datetime = field(default_factory=utc_now)

    def density(self, signature: str) -> float | None:
        pattern = self.patterns.get(signature)
        return None if pattern is None else pattern.density

    def diff(
        self,
        observations: Mapping[str, PatternObservation],
        policy: DensityPolicy,
        baselines: Mapping[str, float] | None = None,
    ) -> list[DensityUpdate]:
        """Compute the density change each observed pattern should receive.

        ``baselines`` supplies the starting density of patterns this tenant
        has never run (the cold-start prior); absent entries start at 0.
        """
        baselines = baselines or {}
        updates: list[DensityUpdate] = []
        for signature in sorted(observations):
            observation = observations[signature]
            if observation.observations == 0:
                continue
            existing = self.patterns.get(signature)
            start = existing.density if existing is not None else baselines.get(signature, 0.0)
            updates.append(DensityUpdate(
                signature=signature,
                before=None if existing is None else existing.density,
                after=policy.update(start, observation.observations, observation.agreements),
                samples_added=observation.observations,
                agreements_added=observation.agreements,
                base_last_updated=None if existing is None else existing.last_updated,
                learned_behaviors={
                    "gap_rate": round(1.0 - observation.agreement_rate, 6),
                },
            ))
        return updates


@dataclass(frozen=True)
class MergeReport:
    written: int
    conflicts: list[str]


async def merge_density_updates(
    store: PatternStore,
    tenant_id: UUID,
    updates: list[DensityUpdate],
) -> MergeReport:
    """Write density updates in one batch, last-writer-wins on conflict."""
    if not updates:
        return MergeReport(written=0, conflicts=[])

    current = await store.get_all(tenant_id)
    now = utc_now()
    conflicts: list[str] = []
    merged: list[Pattern] = []
    for update in updates:
        existing = current.get(update.signature)
        seen = None if existing is None else existing.last_updated
        if seen != update.base_last_updated:
            conflicts.append(update.signature)
        sample_count = update.samples_added + (existing.sample_count if existing else 0)
        agreement_count = update.agreements_added + (existing.agreement_count if existing else 0)
        merged.append(Pattern(
            tenant_id=tenant_id,
            signature=update.signature,
            density=update.after,
            sample_count=sample_count,
            agreement_count=agreement_count,
            learned_behaviors=update.learned_behaviors,
            last_updated=now,
        ))

    await store.upsert_many(merged)
    if conflicts:
        logger.warning(
            "Concurrent density update for tenant %s on %d pattern(s); last writer wins: %s",
            tenant_id, len(conflicts), ", ".join(conflicts),
        )
    return MergeReport(written=len(merged), conflicts=conflicts)


async def nuclear_clear(store: PatternStore, tenant_id: UUID, pattern_prefix: str | None = None) -> int:
    """Forget learned density for a tenant (optionally one key prefix).

    Cleared patterns run in full trace on their next execution.
    """
    deleted = await store.delete(tenant_id, pattern_prefix)
    logger.warning(
        "Nuclear clear for tenant %s (prefix=%s): %d pattern(s) deleted",
        tenant_id, pattern_prefix, deleted,
    )
    return deleted


def cleared_prefixes(signals: Iterable[Signal]) -> tuple[str, ...]:
    """Key prefixes wiped by the nuclear clears among ``signals``.

    A clear without a prefix yields ``""``, which matches every key.
    """
    prefixes = {
        signal.payload.get("prefix") or ""
        for signal in signals
        if signal.payload.get("action") == NUCLEAR_CLEAR_ACTION
    }
    return tuple(sorted(prefixes))
