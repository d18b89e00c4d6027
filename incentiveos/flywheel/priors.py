"""Cross-tenant priors — aggregation after runs and cold-start discounting.

After every run the tenant's density updates are folded into foundational
priors (all tenants) and domain priors (tenants of one domain) with an
exponential moving average. Only the structural key, the confidence, and
counts cross the boundary: no tenant id, entity, or metric data.

A tenant with no density of its own sees priors scaled by
``COLD_START_DISCOUNT``.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from incentiveos.engine.signature import PatternSignature
from incentiveos.flywheel.density import DensityUpdate
from incentiveos.flywheel.models import DomainPattern, FoundationalPattern, PriorEntry
from incentiveos.flywheel.stores import PriorStore
from incentiveos.models.common import utc_now

logger = logging.getLogger(__name__)

COLD_START_DISCOUNT = 0.6
PRIOR_EMA_WEIGHT = 0.1


def ema(existing: float, new_value: float, weight: float = PRIOR_EMA_WEIGHT) -> float:
    return existing * (1.0 - weight) + new_value * weight


def discount(entry: PriorEntry, factor: float = COLD_START_DISCOUNT) -> PriorEntry:
    """Scale a prior for cold start. Already-discounted entries are unchanged."""
    if entry.discounted:
        return entry
    return entry.model_copy(update={"confidence": entry.confidence * factor, "discounted": True})


def foundational_entries(patterns: Mapping[str, FoundationalPattern]) -> dict[str, PriorEntry]:
    return {
        key: PriorEntry(
            confidence=p.confidence_mean,
            total_executions=p.total_executions,
            learned_behaviors=p.learned_behaviors,
        )
        for key, p in patterns.items()
    }


def domain_entries(patterns: Mapping[str, DomainPattern]) -> dict[str, PriorEntry]:
    return {
        key: PriorEntry(
            confidence=p.confidence_mean,
            total_executions=p.total_executions,
            learned_behaviors=p.learned_behaviors,
        )
        for key, p in patterns.items()
    }


class PriorAggregator:
    """Fold a run's density updates into foundational and domain priors."""

    def __init__(self, store: PriorStore, weight: float = PRIOR_EMA_WEIGHT) -> None:
        self._store = store
        self._weight = weight

    async def aggregate(self, updates: list[DensityUpdate], domain_id: str | None) -> int:
        """Return the number of structural keys touched.

        A tenant counts toward ``tenant_count`` the first time it runs a
        pattern (``update.is_new``).
        """
        if not updates:
            return 0

        by_key: dict[str, list[DensityUpdate]] = {}
        for update in updates:
            structural_key = PatternSignature.parse(update.signature).structural_key
            by_key.setdefault(structural_key, []).append(update)

        now = utc_now()
        foundational = await self._store.get_foundational()
        new_foundational: list[FoundationalPattern] = []
        for key, group in sorted(by_key.items()):
            row = foundational.get(key)
            confidence = sum(u.after for u in group) / len(group)
            anomaly = sum(u.anomaly_rate for u in group) / len(group)
            executions = sum(u.samples_added for u in group)
            new_tenants = 1 if any(u.is_new for u in group) else 0
            behaviors = dict(group[-1].learned_behaviors)
            if row is None:
                new_foundational.append(FoundationalPattern(
                    structural_key=key,
                    confidence_mean=confidence,
                    total_executions=executions,
                    tenant_count=1,
                    anomaly_rate_mean=anomaly,
                    learned_behaviors=behaviors,
                    updated_at=now,
                ))
            else:
                new_foundational.append(FoundationalPattern(
                    structural_key=key,
                    confidence_mean=ema(row.confidence_mean, confidence, self._weight),
                    total_executions=row.total_executions + executions,
                    tenant_count=row.tenant_count + new_tenants,
                    anomaly_rate_mean=ema(row.anomaly_rate_mean, anomaly, self._weight),
                    learned_behaviors={**row.learned_behaviors, **behaviors},
                    updated_at=now,
                ))
        await self._store.upsert_foundational(new_foundational)

        if domain_id:
            domain = await self._store.get_domain(domain_id)
            new_domain: list[DomainPattern] = []
            for key, group in sorted(by_key.items()):
                row = domain.get(key)
                confidence = sum(u.after for u in group) / len(group)
                executions = sum(u.samples_added for u in group)
                new_tenants = 1 if any(u.is_new for u in group) else 0
                behaviors = dict(group[-1].learned_behaviors)
                new_domain.append(DomainPattern(
                    structural_key=key,
                    domain_id=domain_id,
                    confidence_mean=confidence if row is None else ema(row.confidence_mean, confidence, self._weight),
                    total_executions=executions if row is None else row.total_executions + executions,
                    tenant_count=1 if row is None else row.tenant_count + new_tenants,
                    learned_behaviors=behaviors if row is None else {**row.learned_behaviors, **behaviors},
                    updated_at=now,
                ))
            await self._store.upsert_domain(new_domain)

        logger.info("Aggregated %d structural pattern(s) into priors (domain=%s)", len(by_key), domain_id)
        return len(by_key)
