"""Reconciliation agent — compare a batch against benchmark expectations.

Every comparison is classified from the delta and the stored trace
evidence. The report is purely a function of its inputs (no clock, no
randomness); signals derived from it are built separately.

Classification order for a comparison with both sides present:
    delta <= tolerance                      -> match
    delta < 1.0                             -> rounding
    component resolved with a gap           -> data_divergence
    input sat exactly on a band boundary    -> logic_divergence
    full trace present and delta % > 5      -> data_divergence
    otherwise                               -> unclassified
A comparison with either side missing is a scope_mismatch.

Deterministic — no LLM calls.
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any
from uuid import UUID

from pydantic import Field

from incentiveos.flywheel.models import Signal
from incentiveos.models.common import AgentType, IncentiveOSBase, SignalType
from incentiveos.models.result import CalculationResult

DEFAULT_TOLERANCE = 0.01
ROUNDING_LIMIT = 1.0
DIVERGENCE_PERCENT = 5.0
FALSE_GREEN_NET_LIMIT = 1.0
FALSE_GREEN_GROSS_MIN = 100.0


class DiscrepancyClass(StrEnum):
    MATCH = "match"
    ROUNDING = "rounding"
    DATA_DIVERGENCE = "data_divergence"
    LOGIC_DIVERGENCE = "logic_divergence"
    SCOPE_MISMATCH = "scope_mismatch"
    UNCLASSIFIED = "unclassified"


_AGREEING = frozenset({DiscrepancyClass.MATCH, DiscrepancyClass.ROUNDING})


class BenchmarkRecord(IncentiveOSBase, frozen=True):
    """Expected outcome from an independent source.

    ``component_id`` None means the record is an entity total.
    """

    entity_external_id: str = Field(..., min_length=1, alias="entityExternalId")
    component_id: str | None = Field(default=None, alias="componentId")
    expected: float = Field(..., alias="expectedOutcome")


@dataclass(frozen=True)
class ReconciliationFinding:
    entity_external_id: str
    component_id: str | None
    expected: float | None
    calculated: float | None
    classification: DiscrepancyClass
    confidence: float
    evidence: str = ""

    @property
    def delta(self) -> float:
        if self.expected is None or self.calculated is None:
            return 0.0
        return self.calculated - self.expected

    @property
    def is_discrepancy(self) -> bool:
        return self.classification not in _AGREEING

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_external_id": self.entity_external_id,
            "component_id": self.component_id,
            "expected": self.expected,
            "calculated": self.calculated,
            "delta": round(self.delta, 6),
            "classification": str(self.classification),
            "confidence": self.confidence,
            "evidence": self.evidence,
        }


@dataclass
class PatternAgreement:
    agreements: int = 0
    disagreements: int = 0


@dataclass(frozen=True)
class ReconciliationReport:
    batch_id: UUID
    tolerance: float
    calculated_entities: int
    expected_entities: int
    matched_entities: int
    total_calculated: float
    total_expected: float
    findings: list[ReconciliationFinding] = field(default_factory=list)
    false_green_entities: list[str] = field(default_factory=list)
    pattern_agreement: dict[str, PatternAgreement] = field(default_factory=dict)

    @property
    def total_delta(self) -> float:
        return self.total_calculated - self.total_expected

    @property
    def false_green_detected(self) -> bool:
        return bool(self.false_green_entities)

    @property
    def classification_counts(self) -> dict[str, int]:
        counts = {str(c): 0 for c in DiscrepancyClass}
        for finding in self.findings:
            counts[str(finding.classification)] += 1
        return counts

    @property
    def discrepancy_count(self) -> int:
        return sum(1 for f in self.findings if f.is_discrepancy)

    def findings_for(self, entity_external_id: str) -> list[ReconciliationFinding]:
        return [f for f in self.findings if f.entity_external_id == entity_external_id]

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch_id": str(self.batch_id),
            "tolerance": self.tolerance,
            "calculated_entities": self.calculated_entities,
            "expected_entities": self.expected_entities,
            "matched_entities": self.matched_entities,
            "total_calculated": self.total_calculated,
            "total_expected": self.total_expected,
            "total_delta": round(self.total_delta, 6),
            "classification_counts": self.classification_counts,
            "false_green_detected": self.false_green_detected,
            "false_green_entities": self.false_green_entities,
            "findings": [f.to_dict() for f in self.findings],
        }


def _trace_by_component(result: CalculationResult) -> dict[str, dict[str, Any]]:
    return {entry["component_id"]: entry for entry in result.trace if "component_id" in entry}


def classify(
    expected: float,
    calculated: float,
    *,
    tolerance: float,
    had_gap: bool,
    boundary_edge: bool,
    has_full_trace: bool,
) -> tuple[DiscrepancyClass, float, str]:
    """Classify one comparison; returns (class, confidence, evidence)."""
    delta = abs(calculated - expected)
    if delta <= tolerance:
        return DiscrepancyClass.MATCH, 1.0, ""
    if delta < ROUNDING_LIMIT:
        return DiscrepancyClass.ROUNDING, 0.9, f"delta {delta:.4f} below {ROUNDING_LIMIT}"
    if had_gap:
        return DiscrepancyClass.DATA_DIVERGENCE, 0.75, "component resolved with a data gap"
    if boundary_edge:
        return DiscrepancyClass.LOGIC_DIVERGENCE, 0.7, "input sat exactly on a band boundary"
    percent = delta / abs(expected) * 100.0 if expected else math.inf
    if has_full_trace and percent > DIVERGENCE_PERCENT:
        return DiscrepancyClass.DATA_DIVERGENCE, 0.6, f"delta {percent:.1f}% with clean trace"
    return DiscrepancyClass.UNCLASSIFIED, 0.3, "no trace evidence explains the delta"


class ReconciliationAgent:
    """Benchmark comparison over one calculation batch.

    Parameters
    ----------
    tolerance:
        Absolute delta considered a match.
    """

    def __init__(self, tolerance: float = DEFAULT_TOLERANCE) -> None:
        self._tolerance = tolerance

    def reconcile(
        self,
        batch_id: UUID,
        results: Sequence[CalculationResult],
        expectations: Sequence[BenchmarkRecord],
        external_ids: Mapping[UUID, str],
        signatures: Mapping[tuple[str, str], str] | None = None,
    ) -> ReconciliationReport:
        """Compare results with expectations.

        Args:
            external_ids: entity_id -> external id for the batch's entities.
            signatures: (variant_id, component_id) -> pattern signature key.
        """
        signatures = signatures or {}
        by_external = {external_ids.get(r.entity_id, str(r.entity_id)): r for r in results}
        expected_by_entity: dict[str, list[BenchmarkRecord]] = {}
        for record in expectations:
            expected_by_entity.setdefault(record.entity_external_id, []).append(record)

        findings: list[ReconciliationFinding] = []
        agreement: dict[str, PatternAgreement] = {}
        false_green: list[str] = []

        for external_id in sorted(set(by_external) | set(expected_by_entity)):
            result = by_external.get(external_id)
            records = expected_by_entity.get(external_id)
            if result is None or records is None:
                findings.append(ReconciliationFinding(
                    entity_external_id=external_id,
                    component_id=None,
                    expected=None if records is None else math.fsum(r.expected for r in records),
                    calculated=None if result is None else result.total_payout,
                    classification=DiscrepancyClass.SCOPE_MISMATCH,
                    confidence=0.9,
                    evidence="missing from calculation" if result is None else "missing from benchmark",
                ))
                continue

            entity_findings = self._compare_entity(external_id, result, records)
            findings.extend(entity_findings)

            component_findings = [f for f in entity_findings if f.component_id is not None]
            for finding in component_findings:
                key = signatures.get((result.variant_id, finding.component_id))
                if key is None or finding.classification == DiscrepancyClass.SCOPE_MISMATCH:
                    continue
                tally = agreement.setdefault(key, PatternAgreement())
                if finding.is_discrepancy:
                    tally.disagreements += 1
                else:
                    tally.agreements += 1

            if len(component_findings) >= 2:
                net = abs(math.fsum(f.delta for f in component_findings))
                gross = math.fsum(abs(f.delta) for f in component_findings)
                if net < FALSE_GREEN_NET_LIMIT and gross > FALSE_GREEN_GROSS_MIN:
                    false_green.append(external_id)

        matched = sum(
            1 for ext in by_external
            if ext in expected_by_entity
            and not any(f.is_discrepancy for f in findings if f.entity_external_id == ext)
        )
        return ReconciliationReport(
            batch_id=batch_id,
            tolerance=self._tolerance,
            calculated_entities=len(by_external),
            expected_entities=len(expected_by_entity),
            matched_entities=matched,
            total_calculated=math.fsum(r.total_payout for r in results),
            total_expected=math.fsum(r.expected for r in expectations),
            findings=findings,
            false_green_entities=false_green,
            pattern_agreement=dict(sorted(agreement.items())),
        )

    def _compare_entity(
        self,
        external_id: str,
        result: CalculationResult,
        records: list[BenchmarkRecord],
    ) -> list[ReconciliationFinding]:
        trace = _trace_by_component(result)
        outcomes = {c.component_id: c for c in result.components}
        findings: list[ReconciliationFinding] = []
        ordered = sorted(records, key=lambda r: (r.component_id is not None, r.component_id or ""))
        for record in ordered:
            if record.component_id is None:
                calculated: float | None = result.total_payout
                had_gap = result.partial
                boundary = any(e.get("boundary_edge") for e in trace.values())
                full = any(e.get("mode") == "full_trace" for e in trace.values())
            else:
                outcome = outcomes.get(record.component_id)
                if outcome is None:
                    findings.append(ReconciliationFinding(
                        external_id, record.component_id, record.expected, None,
                        DiscrepancyClass.SCOPE_MISMATCH, 0.9, "component not in calculated variant",
                    ))
                    continue
                calculated = outcome.value
                entry = trace.get(record.component_id, {})
                had_gap = outcome.gap is not None
                boundary = bool(entry.get("boundary_edge"))
                full = entry.get("mode") == "full_trace"

            classification, confidence, evidence = classify(
                record.expected, calculated,
                tolerance=self._tolerance, had_gap=had_gap,
                boundary_edge=boundary, has_full_trace=full,
            )
            findings.append(ReconciliationFinding(
                external_id, record.component_id, record.expected, calculated,
                classification, confidence, evidence,
            ))
        return findings

    @staticmethod
    def build_signals(report: ReconciliationReport, tenant_id: UUID) -> list[Signal]:
        """One reconciliation signal per pattern with agreement counts."""
        signals: list[Signal] = []
        for signature, tally in report.pattern_agreement.items():
            total = tally.agreements + tally.disagreements
            signals.append(Signal(
                tenant_id=tenant_id,
                signal_type=SignalType.RECONCILIATION,
                agent_type=AgentType.RECONCILIATION,
                signature=signature,
                batch_id=report.batch_id,
                confidence=tally.agreements / total if total else None,
                payload={
                    "agreements": tally.agreements,
                    "disagreements": tally.disagreements,
                    "false_green": report.false_green_detected,
                },
            ))
        return signals
