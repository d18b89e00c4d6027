"""Domain Viability Test — five gates before a domain is onboarded.

Gates:
    rule_expressibility           every rule pattern maps to an available primitive
    data_shape_compatibility      data is tabular, entity- and period-keyed, numeric
    outcome_semantics             outcome is a per-entity, per-period additive number
    reconciliation_applicability  an independent expectation source exists
    scale_profile                 no per-entity external calls, bounded lookback

``natural_fit`` requires all five gates to pass, ``partial_fit`` at least
three; anything else is ``not_viable``. A failed gate is never upgraded.

Deterministic — no LLM calls.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any
from uuid import UUID

from pydantic import Field

from incentiveos.models.common import IncentiveOSBase, PrimitiveKind, UTCTimestamp, utc_now

logger = logging.getLogger(__name__)

MAX_SUPPORTED_ENTITIES = 10_000_000
DEFAULT_MAX_LOOKBACK = 12

AVAILABLE_PRIMITIVES: frozenset[str] = frozenset(
    str(kind) for kind in PrimitiveKind if kind != PrimitiveKind.DISABLED
)


class ViabilityScore(StrEnum):
    NATURAL_FIT = "natural_fit"
    PARTIAL_FIT = "partial_fit"
    NOT_VIABLE = "not_viable"


class GateName(StrEnum):
    RULE_EXPRESSIBILITY = "rule_expressibility"
    DATA_SHAPE_COMPATIBILITY = "data_shape_compatibility"
    OUTCOME_SEMANTICS = "outcome_semantics"
    RECONCILIATION_APPLICABILITY = "reconciliation_applicability"
    SCALE_PROFILE = "scale_profile"


# ---------------------------------------------------------------------------
# Domain description
# ---------------------------------------------------------------------------


class DataShapeProfile(IncentiveOSBase, frozen=True):
    tabular: bool = True
    entity_keyed: bool = True
    period_keyed: bool = True
    numeric_metrics: bool = True


class OutcomeProfile(IncentiveOSBase, frozen=True):
    numeric: bool = True
    per_entity: bool = True
    per_period: bool = True
    additive_components: bool = True


class ReconciliationProfile(IncentiveOSBase, frozen=True):
    has_expectation_source: bool = True
    tolerance: float | None = Field(default=0.01, ge=0.0)


class ScaleProfile(IncentiveOSBase, frozen=True):
    expected_entities: int = Field(default=10_000, ge=0)
    max_lookback_periods: int = Field(default=0, ge=0)
    per_entity_external_calls: int = Field(default=0, ge=0)


class DomainDefinition(IncentiveOSBase, frozen=True):
    """A candidate domain described in structural terms."""

    domain_id: str = Field(..., min_length=1)
    display_name: str = ""
    version: str = "0.1.0"
    terminology: dict[str, str] = Field(
        default_factory=dict,
        description="Structural term (entity, outcome, ...) -> domain word.",
    )
    required_primitives: list[str] = Field(default_factory=list)
    data_shape: DataShapeProfile = Field(default_factory=DataShapeProfile)
    outcome: OutcomeProfile = Field(default_factory=OutcomeProfile)
    reconciliation: ReconciliationProfile = Field(default_factory=ReconciliationProfile)
    scale: ScaleProfile = Field(default_factory=ScaleProfile)


# ---------------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GateResult:
    passed: bool
    grade: float
    detail: str = ""


@dataclass(frozen=True)
class ViabilityReport:
    domain_id: str
    gates: dict[GateName, GateResult]
    score: ViabilityScore
    missing_primitives: list[str] = field(default_factory=list)

    @property
    def passed_count(self) -> int:
        return sum(1 for g in self.gates.values() if g.passed)

    def to_dict(self) -> dict[str, Any]:
        return {
            "domain_id": self.domain_id,
            "score": str(self.score),
            "missing_primitives": self.missing_primitives,
            "gates": {
                str(name): {"passed": g.passed, "grade": g.grade, "detail": g.detail}
                for name, g in self.gates.items()
            },
        }


def _gate(checks: dict[str, bool]) -> GateResult:
    failed = [name for name, ok in checks.items() if not ok]
    grade = round((len(checks) - len(failed)) / len(checks), 4) if checks else 1.0
    detail = "" if not failed else "failed: " + ", ".join(failed)
    return GateResult(passed=not failed, grade=grade, detail=detail)


def evaluate_domain_viability(
    domain: DomainDefinition,
    available_primitives: Iterable[str] = AVAILABLE_PRIMITIVES,
    max_lookback: int = DEFAULT_MAX_LOOKBACK,
) -> ViabilityReport:
    """Run the five gates for a domain."""
    available = set(available_primitives)
    missing = sorted({p for p in domain.required_primitives if p not in available})

    rule = GateResult(
        passed=not missing and bool(domain.required_primitives),
        grade=round(
            1 - len(missing) / len(set(domain.required_primitives)), 4,
        ) if domain.required_primitives else 0.0,
        detail="no rule patterns declared" if not domain.required_primitives
        else ("missing: " + ", ".join(missing) if missing else ""),
    )
    shape = domain.data_shape
    outcome = domain.outcome
    recon = domain.reconciliation
    scale = domain.scale

    gates = {
        GateName.RULE_EXPRESSIBILITY: rule,
        GateName.DATA_SHAPE_COMPATIBILITY: _gate({
            "tabular": shape.tabular,
            "entity_keyed": shape.entity_keyed,
            "period_keyed": shape.period_keyed,
            "numeric_metrics": shape.numeric_metrics,
        }),
        GateName.OUTCOME_SEMANTICS: _gate({
            "numeric": outcome.numeric,
            "per_entity": outcome.per_entity,
            "per_period": outcome.per_period,
            "additive_components": outcome.additive_components,
        }),
        GateName.RECONCILIATION_APPLICABILITY: _gate({
            "expectation_source": recon.has_expectation_source,
            "tolerance_defined": recon.tolerance is not None,
        }),
        GateName.SCALE_PROFILE: _gate({
            "no_per_entity_external_calls": scale.per_entity_external_calls == 0,
            "lookback_within_limit": scale.max_lookback_periods <= max_lookback,
            "entities_within_limit": scale.expected_entities <= MAX_SUPPORTED_ENTITIES,
        }),
    }

    passed = sum(1 for g in gates.values() if g.passed)
    if passed == len(gates):
        score = ViabilityScore.NATURAL_FIT
    elif passed >= 3:
        score = ViabilityScore.PARTIAL_FIT
    else:
        score = ViabilityScore.NOT_VIABLE

    return ViabilityReport(domain_id=domain.domain_id, gates=gates, score=score, missing_primitives=missing)


# ---------------------------------------------------------------------------
# Per-tenant evaluation record
# ---------------------------------------------------------------------------


class DomainViabilityRecord(IncentiveOSBase, frozen=True):
    domain_id: str
    tenant_id: UUID
    score: ViabilityScore
    gates: dict[str, dict[str, Any]] = Field(default_factory=dict)
    missing_primitives: list[str] = Field(default_factory=list)
    evaluated_at: UTCTimestamp = Field(default_factory=utc_now)


class ViabilityStore(ABC):
    @abstractmethod
    async def get(self, domain_id: str, tenant_id: UUID) -> DomainViabilityRecord | None: ...

    @abstractmethod
    async def save(self, record: DomainViabilityRecord) -> None: ...


class InMemoryViabilityStore(ViabilityStore):
    """In-memory implementation for tests."""

    def __init__(self) -> None:
        self._records: dict[tuple[str, UUID], DomainViabilityRecord] = {}

    async def get(self, domain_id: str, tenant_id: UUID) -> DomainViabilityRecord | None:
        return self._records.get((domain_id, tenant_id))

    async def save(self, record: DomainViabilityRecord) -> None:
        self._records[(record.domain_id, record.tenant_id)] = record


class DomainViabilityService:
    """Evaluate a domain once per tenant and keep the verdict."""

    def __init__(self, store: ViabilityStore, max_lookback: int = DEFAULT_MAX_LOOKBACK) -> None:
        self._store = store
        self._max_lookback = max_lookback

    async def evaluate_for_tenant(self, domain: DomainDefinition, tenant_id: UUID) -> DomainViabilityRecord:
        existing = await self._store.get(domain.domain_id, tenant_id)
        if existing is not None:
            return existing

        report = evaluate_domain_viability(domain, max_lookback=self._max_lookback)
        record = DomainViabilityRecord(
            domain_id=domain.domain_id,
            tenant_id=tenant_id,
            score=report.score,
            gates=report.to_dict()["gates"],
            missing_primitives=report.missing_primitives,
        )
        await self._store.save(record)
        logger.info(
            "Domain %s evaluated for tenant %s: %s (%d/5 gates)",
            domain.domain_id, tenant_id, report.score, report.passed_count,
        )
        return record
