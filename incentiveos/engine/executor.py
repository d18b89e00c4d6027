"""Intent executor — walks a compiled plan for every entity in a window.

Pure in-memory evaluation: the preloaded window and the per-pattern mode
map are complete before the loop starts, and nothing in here performs I/O.
Entities are split into chunks evaluated on a bounded thread pool; each
chunk fills its own buffers, merged afterwards in input order, so output
order and content are identical for identical inputs.

A resolution gap zeroes only the component it occurs in. The entity result
keeps status success and is flagged partial.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from incentiveos.compiler.operations import (
    AggregateDimension,
    AggregateOp,
    CompiledComponent,
    CompiledPlan,
    ConditionalGateOp,
    ConstantOp,
    ConstantSource,
    DisabledOp,
    Lookup1DOp,
    Lookup2DOp,
    MetricSource,
    Modifiers,
    Operation,
    RatioOp,
    RatioSource,
    ScalarMultiplyOp,
    TemporalWindowOp,
    ValueSource,
    WeightedBlendOp,
)
from incentiveos.engine import primitives
from incentiveos.engine.cancellation import CancellationToken
from incentiveos.engine.preload import PreloadedWindow
from incentiveos.engine.primitives import MissingMetric, ResolutionGap
from incentiveos.models.common import ExecutionMode

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Output types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ComponentValue:
    component_id: str
    name: str
    order: int
    value: float
    enabled: bool = True
    gap: str | None = None


@dataclass(frozen=True)
class EntityResult:
    entity_id: UUID
    variant_id: str
    components: tuple[ComponentValue, ...]
    total_payout: float
    partial: bool
    trace: tuple[dict[str, Any], ...] = ()


@dataclass
class PatternObservation:
    """Per-run tally for one pattern: evaluations and gap-free evaluations."""

    observations: int = 0
    agreements: int = 0

    @property
    def agreement_rate(self) -> float:
        if self.observations == 0:
            return 0.0
        return self.agreements / self.observations

    def merge(self, other: PatternObservation) -> None:
        self.observations += other.observations
        self.agreements += other.agreements


@dataclass
class ExecutionReport:
    results: list[EntityResult] = field(default_factory=list)
    observations: dict[str, PatternObservation] = field(default_factory=dict)

    @property
    def total_payout(self) -> float:
        return math.fsum(r.total_payout for r in self.results)

    @property
    def partial_count(self) -> int:
        return sum(1 for r in self.results if r.partial)


# ---------------------------------------------------------------------------
# Source resolution
# ---------------------------------------------------------------------------


def _metric(metrics: Mapping[str, float], name: str) -> float:
    try:
        return metrics[name]
    except KeyError:
        raise MissingMetric(name) from None


def resolve_source(source: ValueSource, metrics: Mapping[str, float]) -> float:
    match source:
        case MetricSource():
            return _metric(metrics, source.metric)
        case RatioSource():
            return primitives.ratio(
                _metric(metrics, source.numerator), _metric(metrics, source.denominator),
            )
        case ConstantSource():
            return source.value


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


class IntentExecutor:
    """Deterministic batch evaluator.

    Parameters
    ----------
    max_workers:
        Upper bound on concurrently evaluated chunks.
    chunk_size:
        Entities per chunk.
    """

    def __init__(self, max_workers: int = 4, chunk_size: int = 1000) -> None:
        if max_workers < 1 or chunk_size < 1:
            msg = "max_workers and chunk_size must be >= 1."
            raise ValueError(msg)
        self._max_workers = max_workers
        self._chunk_size = chunk_size

    def execute(
        self,
        plan: CompiledPlan,
        window: PreloadedWindow,
        modes: Mapping[str, ExecutionMode],
        *,
        entity_ids: Sequence[UUID] | None = None,
        cancellation: CancellationToken | None = None,
    ) -> ExecutionReport:
        """Evaluate every entity and return results in input order.

        Patterns missing from ``modes`` run in full trace.
        """
        ids = list(window.entity_ids if entity_ids is None else entity_ids)
        if cancellation is not None:
            cancellation.raise_if_cancelled("evaluation start")
        if not ids:
            return ExecutionReport()

        chunks = [ids[i:i + self._chunk_size] for i in range(0, len(ids), self._chunk_size)]

        def run_chunk(chunk: list[UUID]) -> ExecutionReport:
            if cancellation is not None:
                cancellation.raise_if_cancelled("evaluation")
            return self._evaluate_chunk(plan, window, modes, chunk)

        if len(chunks) == 1 or self._max_workers == 1:
            partials = [run_chunk(chunk) for chunk in chunks]
        else:
            with ThreadPoolExecutor(max_workers=self._max_workers) as pool:
                partials = list(pool.map(run_chunk, chunks))

        report = ExecutionReport()
        for part in partials:
            report.results.extend(part.results)
            for key, observation in part.observations.items():
                report.observations.setdefault(key, PatternObservation()).merge(observation)

        logger.info(
            "Evaluated %d entities in %d chunk(s); %d partial",
            len(report.results), len(chunks), report.partial_count,
        )
        return report

    def _evaluate_chunk(
        self,
        plan: CompiledPlan,
        window: PreloadedWindow,
        modes: Mapping[str, ExecutionMode],
        chunk: list[UUID],
    ) -> ExecutionReport:
        report = ExecutionReport()
        for entity_id in chunk:
            report.results.append(self.evaluate_entity(plan, window, modes, entity_id, report.observations))
        return report

    def evaluate_entity(
        self,
        plan: CompiledPlan,
        window: PreloadedWindow,
        modes: Mapping[str, ExecutionMode],
        entity_id: UUID,
        observations: dict[str, PatternObservation] | None = None,
    ) -> EntityResult:
        variant = plan.select_variant(window.attributes(entity_id))
        metrics = window.metrics_for(entity_id)
        outputs: dict[str, float] = {}
        values: list[ComponentValue] = []
        trace: list[dict[str, Any]] = []

        for component in variant.components:
            if not component.enabled:
                outputs[component.component_id] = 0.0
                values.append(ComponentValue(
                    component.component_id, component.name, component.order, 0.0, enabled=False,
                ))
                continue

            key = component.signature.key
            mode = modes.get(key, ExecutionMode.FULL_TRACE)
            detail: dict[str, Any] | None = {} if mode == ExecutionMode.FULL_TRACE else None
            gap: str | None = None
            try:
                value = self._evaluate(component.operation, entity_id, window, metrics, outputs, detail)
                value = self._apply_modifiers(value, component.modifiers, metrics, detail)
            except ResolutionGap as exc:
                value = 0.0
                gap = exc.code
                if detail is not None:
                    detail["gap_message"] = str(exc)

            if observations is not None:
                observation = observations.setdefault(key, PatternObservation())
                observation.observations += 1
                if gap is None:
                    observation.agreements += 1

            outputs[component.component_id] = value
            values.append(ComponentValue(
                component.component_id, component.name, component.order, value, gap=gap,
            ))
            entry = _trace_entry(component, mode, value, gap, detail)
            if entry is not None:
                trace.append(entry)

        return EntityResult(
            entity_id=entity_id,
            variant_id=variant.variant_id,
            components=tuple(values),
            total_payout=math.fsum(v.value for v in values),
            partial=any(v.gap is not None for v in values),
            trace=tuple(trace),
        )

    # ------------------------------------------------------------------
    # Primitive dispatch
    # ------------------------------------------------------------------

    def _evaluate(
        self,
        op: Operation,
        entity_id: UUID,
        window: PreloadedWindow,
        metrics: Mapping[str, float],
        outputs: Mapping[str, float],
        detail: dict[str, Any] | None,
    ) -> float:
        match op:
            case Lookup1DOp():
                value = resolve_source(op.source, metrics)
                result = primitives.to_number(primitives.bounded_lookup_1d(value, op.tiers))
                if detail is not None:
                    bands = [t.band for t in op.tiers]
                    index = primitives.resolve_band(value, bands)
                    detail.update(
                        inputs={"value": value},
                        band_index=index,
                        boundary_edge=bands[index].on_lower_edge(value),
                    )
                return result

            case Lookup2DOp():
                row_value = resolve_source(op.row_source, metrics)
                column_value = resolve_source(op.column_source, metrics)
                result = primitives.bounded_lookup_2d(
                    row_value, column_value, op.row_bands, op.column_bands, op.matrix,
                )
                if detail is not None:
                    row_index = primitives.resolve_band(row_value, op.row_bands)
                    column_index = primitives.resolve_band(column_value, op.column_bands)
                    detail.update(
                        inputs={"row": row_value, "column": column_value},
                        band_index=[row_index, column_index],
                        boundary_edge=(
                            op.row_bands[row_index].on_lower_edge(row_value)
                            or op.column_bands[column_index].on_lower_edge(column_value)
                        ),
                    )
                return result

            case ScalarMultiplyOp():
                base = resolve_source(op.base, metrics)
                gated = op.min_threshold is not None and base < op.min_threshold
                if detail is not None:
                    detail.update(inputs={"base": base, "rate": op.rate}, gated=gated)
                return 0.0 if gated else primitives.scalar_multiply(base, op.rate)

            case ConditionalGateOp():
                applied_to = resolve_source(op.applied_to, metrics)
                drivers = [resolve_source(d, metrics) for d in op.drivers]
                result = primitives.conditional_gate(applied_to, drivers, op.conditions)
                if detail is not None:
                    matched = next(
                        (i for i, (d, c) in enumerate(zip(drivers, op.conditions)) if c.band.contains(d)),
                        None,
                    )
                    detail.update(
                        inputs={"applied_to": applied_to, "drivers": drivers},
                        band_index=matched,
                        boundary_edge=(
                            matched is not None
                            and op.conditions[matched].band.on_lower_edge(drivers[matched])
                        ),
                    )
                return result

            case AggregateOp():
                rows = _aggregate_rows(op, entity_id, window, metrics)
                result = primitives.aggregate(rows, op.metric)
                if detail is not None:
                    detail.update(inputs={"dimension": str(op.dimension), "rows": len(rows)})
                return result

            case RatioOp():
                numerator = resolve_source(op.numerator, metrics)
                denominator = resolve_source(op.denominator, metrics)
                if detail is not None:
                    detail.update(inputs={"numerator": numerator, "denominator": denominator})
                return primitives.ratio(numerator, denominator)

            case ConstantOp():
                return primitives.constant(op.value)

            case WeightedBlendOp():
                blended = [outputs.get(cid, 0.0) for cid in op.component_ids]
                if detail is not None:
                    detail.update(inputs=dict(zip(op.component_ids, blended)), weights=list(op.weights))
                return primitives.weighted_blend(blended, op.weights)

            case TemporalWindowOp():
                prior = window.history_for(entity_id)[-op.lookback:] if op.lookback else []
                history = []
                for period_metrics in prior:
                    try:
                        history.append(resolve_source(op.source, period_metrics))
                    except MissingMetric:
                        continue
                try:
                    current = resolve_source(op.source, metrics)
                except MissingMetric:
                    current = None
                if detail is not None:
                    detail.update(inputs={"history": history, "current": current})
                return primitives.temporal_window(
                    history, current, op.lookback, op.reducer, op.include_current,
                )

            case DisabledOp():
                return 0.0

    def _apply_modifiers(
        self,
        value: float,
        modifiers: Modifiers,
        metrics: Mapping[str, float],
        detail: dict[str, Any] | None,
    ) -> float:
        if modifiers.is_empty:
            return value
        applied: list[dict[str, Any]] = []
        if modifiers.proration is not None:
            numerator = resolve_source(modifiers.proration.numerator, metrics)
            denominator = resolve_source(modifiers.proration.denominator, metrics)
            after = primitives.apply_proration(value, numerator, denominator)
            applied.append({"modifier": "proration", "before": value, "after": after})
            value = after
        if modifiers.floor is not None:
            after = primitives.apply_floor(value, modifiers.floor)
            applied.append({"modifier": "floor", "before": value, "after": after})
            value = after
        if modifiers.cap is not None:
            after = primitives.apply_cap(value, modifiers.cap)
            applied.append({"modifier": "cap", "before": value, "after": after})
            value = after
        if detail is not None:
            detail["modifiers"] = applied
        return value


def _aggregate_rows(
    op: AggregateOp,
    entity_id: UUID,
    window: PreloadedWindow,
    metrics: Mapping[str, float],
) -> list[Mapping[str, Any]]:
    if op.dimension == AggregateDimension.GROUP:
        group = window.group_value(entity_id, op.group_by)
        if group is None:
            raise MissingMetric(op.group_by)
        return window.rows_for_group(op.group_by, group)
    if op.dimension == AggregateDimension.WINDOW:
        return [*window.history_for(entity_id)[-op.lookback:], metrics]
    return window.rows.get(entity_id, [])


def _trace_entry(
    component: CompiledComponent,
    mode: ExecutionMode,
    value: float,
    gap: str | None,
    detail: dict[str, Any] | None,
) -> dict[str, Any] | None:
    if mode == ExecutionMode.SILENT:
        return None
    entry: dict[str, Any] = {
        "component_id": component.component_id,
        "mode": str(mode),
        "output": value,
        "gap": gap,
    }
    if mode == ExecutionMode.FULL_TRACE:
        entry["primitive"] = str(component.operation.kind)
        entry["signature"] = component.signature.key
        entry.update(detail or {})
    return entry
