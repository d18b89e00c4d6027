"""Resolution agent — investigate a dispute against stored evidence.

Uses the disputed result's trace, the reconciliation findings for the
entity, and the tenant's priors to name a root cause and recommend an
action. Confirmed errors are recorded as resolution signals so the affected
pattern's density drops on the next load.

Root-cause order:
    no result for the entity                 -> scope_error
    component resolved with a data gap       -> data_error
    reconciliation data divergence           -> data_error (adjustment proposed)
    boundary-edge evidence                   -> boundary_edge
    other reconciliation discrepancy         -> logic_error
    pattern density below light-trace level  -> interpretation_ambiguity
    trace present, nothing wrong             -> no_error_found (evidence)
    nothing to go on                         -> no_error_found (escalate)

Deterministic — no LLM calls.
"""

from __future__ import annotations

import math
from collections import Counter
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any
from uuid import UUID

from pydantic import Field

from incentiveos.agents.reconciliation import DiscrepancyClass, ReconciliationFinding
from incentiveos.engine.modes import FULL_TRACE_MAX
from incentiveos.engine.signature import PatternSignature
from incentiveos.flywheel.agent_memory import AgentPriors
from incentiveos.flywheel.models import Signal
from incentiveos.models.common import AgentType, IncentiveOSBase, SignalType, UUIDv7, new_uuid7
from incentiveos.models.result import CalculationResult

PATTERN_MIN_OCCURRENCES = 3


class RootCause(StrEnum):
    DATA_ERROR = "data_error"
    LOGIC_ERROR = "logic_error"
    BOUNDARY_EDGE = "boundary_edge"
    INTERPRETATION_AMBIGUITY = "interpretation_ambiguity"
    SCOPE_ERROR = "scope_error"
    NO_ERROR_FOUND = "no_error_found"


class Recommendation(StrEnum):
    APPROVE_ADJUSTMENT = "approve_adjustment"
    REJECT_WITH_EVIDENCE = "reject_with_evidence"
    ESCALATE_TO_HUMAN = "escalate_to_human"
    REQUEST_DATA = "request_data"


class Dispute(IncentiveOSBase, frozen=True):
    dispute_id: UUIDv7 = Field(default_factory=new_uuid7)
    tenant_id: UUID
    entity_id: UUID
    entity_external_id: str | None = None
    batch_id: UUID
    component_id: str | None = None
    category: str = "general"
    description: str = ""
    amount_disputed: float | None = None


@dataclass(frozen=True)
class ResolutionInvestigation:
    dispute_id: UUID
    entity_id: UUID
    root_cause: RootCause
    confidence: float
    recommendation: Recommendation
    component_ids: tuple[str, ...] = ()
    variant_id: str | None = None
    suggested_adjustment: float | None = None
    evidence: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "dispute_id": str(self.dispute_id),
            "entity_id": str(self.entity_id),
            "root_cause": str(self.root_cause),
            "confidence": self.confidence,
            "recommendation": str(self.recommendation),
            "component_ids": list(self.component_ids),
            "variant_id": self.variant_id,
            "suggested_adjustment": self.suggested_adjustment,
            "evidence": list(self.evidence),
        }


@dataclass(frozen=True)
class ResolutionPattern:
    root_cause: RootCause
    count: int
    top_components: list[str] = field(default_factory=list)


class ResolutionAgent:
    """Dispute investigation over stored results and reconciliation evidence."""

    def investigate(
        self,
        dispute: Dispute,
        result: CalculationResult | None,
        findings: Sequence[ReconciliationFinding] = (),
        priors: AgentPriors | None = None,
        signatures: Mapping[tuple[str, str], str] | None = None,
    ) -> ResolutionInvestigation:
        signatures = signatures or {}

        def conclude(
            cause: RootCause,
            confidence: float,
            recommendation: Recommendation,
            components: Sequence[str] = (),
            evidence: Sequence[str] = (),
            adjustment: float | None = None,
        ) -> ResolutionInvestigation:
            return ResolutionInvestigation(
                dispute_id=dispute.dispute_id,
                entity_id=dispute.entity_id,
                root_cause=cause,
                confidence=confidence,
                recommendation=recommendation,
                component_ids=tuple(components),
                variant_id=None if result is None else result.variant_id,
                suggested_adjustment=adjustment,
                evidence=tuple(evidence),
            )

        if result is None:
            return conclude(
                RootCause.SCOPE_ERROR, 0.9, Recommendation.REQUEST_DATA,
                evidence=["entity has no result in the disputed batch"],
            )

        outcomes = [
            c for c in result.components
            if dispute.component_id is None or c.component_id == dispute.component_id
        ]
        relevant = {c.component_id for c in outcomes}
        related = [
            f for f in findings
            if f.component_id is None or f.component_id in relevant
        ]
        trace = [e for e in result.trace if e.get("component_id") in relevant]

        gaps = [c for c in outcomes if c.gap is not None]
        if gaps:
            return conclude(
                RootCause.DATA_ERROR, 0.8, Recommendation.REQUEST_DATA,
                [c.component_id for c in gaps],
                [f"{c.component_id}: {c.gap}" for c in gaps],
            )

        divergent = [f for f in related if f.classification == DiscrepancyClass.DATA_DIVERGENCE]
        if divergent:
            adjustment = -math.fsum(f.delta for f in divergent)
            return conclude(
                RootCause.DATA_ERROR, 0.85, Recommendation.APPROVE_ADJUSTMENT,
                [f.component_id for f in divergent if f.component_id],
                [f"{f.component_id or 'total'}: delta {f.delta:.2f}" for f in divergent],
                adjustment,
            )

        edges = [e["component_id"] for e in trace if e.get("boundary_edge")]
        logic = [f for f in related if f.classification == DiscrepancyClass.LOGIC_DIVERGENCE]
        if edges or logic:
            components = sorted(set(edges) | {f.component_id for f in logic if f.component_id})
            return conclude(
                RootCause.BOUNDARY_EDGE, 0.75, Recommendation.ESCALATE_TO_HUMAN,
                components, ["input sat exactly on a band boundary"],
            )

        other = [f for f in related if f.is_discrepancy and f.classification != DiscrepancyClass.SCOPE_MISMATCH]
        if other:
            return conclude(
                RootCause.LOGIC_ERROR, 0.6, Recommendation.ESCALATE_TO_HUMAN,
                [f.component_id for f in other if f.component_id],
                [f"{f.component_id or 'total'}: {f.classification}" for f in other],
            )

        if priors is not None:
            uncertain = []
            for component_id in sorted(relevant):
                key = signatures.get((result.variant_id, component_id))
                if key is None:
                    continue
                if priors.effective_density(PatternSignature.parse(key)) < FULL_TRACE_MAX:
                    uncertain.append(component_id)
            if uncertain:
                return conclude(
                    RootCause.INTERPRETATION_AMBIGUITY, 0.6, Recommendation.ESCALATE_TO_HUMAN,
                    uncertain, ["pattern confidence below light-trace threshold"],
                )

        if trace:
            return conclude(
                RootCause.NO_ERROR_FOUND, 0.5, Recommendation.REJECT_WITH_EVIDENCE,
                sorted(relevant), ["trace confirms the calculated value"],
            )
        return conclude(
            RootCause.NO_ERROR_FOUND, 0.3, Recommendation.ESCALATE_TO_HUMAN,
            sorted(relevant), ["no trace retained for the disputed components"],
        )

    @staticmethod
    def build_signal(
        investigation: ResolutionInvestigation,
        tenant_id: UUID,
        batch_id: UUID,
        signatures: Mapping[tuple[str, str], str] | None = None,
    ) -> list[Signal]:
        """Resolution signals for a confirmed error; none for no_error_found."""
        if investigation.root_cause == RootCause.NO_ERROR_FOUND:
            return []
        signatures = signatures or {}
        variant = investigation.variant_id
        keys = sorted({
            signatures[(variant, c)] for c in investigation.component_ids
            if variant is not None and (variant, c) in signatures
        })
        payload = {
            "dispute_id": str(investigation.dispute_id),
            "root_cause": str(investigation.root_cause),
            "recommendation": str(investigation.recommendation),
            "agreements": 0,
            "disagreements": 1,
        }
        return [
            Signal(
                tenant_id=tenant_id,
                signal_type=SignalType.RESOLUTION,
                agent_type=AgentType.RESOLUTION,
                signature=key,
                batch_id=batch_id,
                confidence=investigation.confidence,
                payload=payload,
            )
            for key in (keys or [None])
        ]


def detect_resolution_patterns(
    investigations: Sequence[ResolutionInvestigation],
    min_occurrences: int = PATTERN_MIN_OCCURRENCES,
) -> list[ResolutionPattern]:
    """Root causes seen at least ``min_occurrences`` times, with top components."""
    by_cause: dict[RootCause, list[ResolutionInvestigation]] = {}
    for investigation in investigations:
        by_cause.setdefault(investigation.root_cause, []).append(investigation)

    patterns: list[ResolutionPattern] = []
    for cause in sorted(by_cause):
        group = by_cause[cause]
        if len(group) < min_occurrences:
            continue
        counter = Counter(c for inv in group for c in inv.component_ids)
        top = [c for c, _ in sorted(counter.items(), key=lambda kv: (-kv[1], kv[0]))[:3]]
        patterns.append(ResolutionPattern(root_cause=cause, count=len(group), top_components=top))
    return patterns
