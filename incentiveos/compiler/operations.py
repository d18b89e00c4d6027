"""Compiled plan operations — a tagged union over the primitive vocabulary.

Each operation is a frozen dataclass carrying a ``kind`` discriminator and
exactly the validated inputs its primitive needs. The executor dispatches
on ``kind``; an operation that exists is always executable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Literal

import numpy as np

from incentiveos.engine.primitives import Band, GateCondition, Tier, WindowReducer
from incentiveos.models.common import PrimitiveKind

if TYPE_CHECKING:
    from uuid import UUID

    from incentiveos.engine.signature import PatternSignature


# ---------------------------------------------------------------------------
# Value sources
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MetricSource:
    metric: str
    kind: Literal["metric"] = field(default="metric", init=False)


@dataclass(frozen=True)
class RatioSource:
    """Quotient of two metrics, e.g. attainment = revenue / quota."""

    numerator: str
    denominator: str
    kind: Literal["ratio"] = field(default="ratio", init=False)


@dataclass(frozen=True)
class ConstantSource:
    value: float
    kind: Literal["constant"] = field(default="constant", init=False)


ValueSource = MetricSource | RatioSource | ConstantSource


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


class AggregateDimension(StrEnum):
    ENTITY = "entity"
    GROUP = "group"
    WINDOW = "window"


@dataclass(frozen=True)
class Lookup1DOp:
    source: ValueSource
    tiers: tuple[Tier, ...]
    kind: Literal[PrimitiveKind.BOUNDED_LOOKUP_1D] = field(
        default=PrimitiveKind.BOUNDED_LOOKUP_1D, init=False,
    )


@dataclass(frozen=True)
class Lookup2DOp:
    row_source: ValueSource
    column_source: ValueSource
    row_bands: tuple[Band, ...]
    column_bands: tuple[Band, ...]
    matrix: np.ndarray = field(compare=False)
    kind: Literal[PrimitiveKind.BOUNDED_LOOKUP_2D] = field(
        default=PrimitiveKind.BOUNDED_LOOKUP_2D, init=False,
    )


@dataclass(frozen=True)
class ScalarMultiplyOp:
    base: ValueSource
    rate: float
    min_threshold: float | None = None
    kind: Literal[PrimitiveKind.SCALAR_MULTIPLY] = field(
        default=PrimitiveKind.SCALAR_MULTIPLY, init=False,
    )


@dataclass(frozen=True)
class ConditionalGateOp:
    applied_to: ValueSource
    drivers: tuple[ValueSource, ...]
    conditions: tuple[GateCondition, ...]
    kind: Literal[PrimitiveKind.CONDITIONAL_GATE] = field(
        default=PrimitiveKind.CONDITIONAL_GATE, init=False,
    )


@dataclass(frozen=True)
class AggregateOp:
    metric: str
    dimension: AggregateDimension = AggregateDimension.ENTITY
    group_by: str | None = None
    lookback: int = 0
    kind: Literal[PrimitiveKind.AGGREGATE] = field(
        default=PrimitiveKind.AGGREGATE, init=False,
    )


@dataclass(frozen=True)
class RatioOp:
    numerator: ValueSource
    denominator: ValueSource
    kind: Literal[PrimitiveKind.RATIO] = field(default=PrimitiveKind.RATIO, init=False)


@dataclass(frozen=True)
class ConstantOp:
    value: float
    kind: Literal[PrimitiveKind.CONSTANT] = field(default=PrimitiveKind.CONSTANT, init=False)


@dataclass(frozen=True)
class WeightedBlendOp:
    """Blend of earlier component outputs in the same variant."""

    component_ids: tuple[str, ...]
    weights: tuple[float, ...]
    kind: Literal[PrimitiveKind.WEIGHTED_BLEND] = field(
        default=PrimitiveKind.WEIGHTED_BLEND, init=False,
    )


@dataclass(frozen=True)
class TemporalWindowOp:
    source: ValueSource
    lookback: int
    reducer: WindowReducer = WindowReducer.AVG
    include_current: bool = True
    kind: Literal[PrimitiveKind.TEMPORAL_WINDOW] = field(
        default=PrimitiveKind.TEMPORAL_WINDOW, init=False,
    )


@dataclass(frozen=True)
class DisabledOp:
    """A switched-off component: yields 0 and keeps its slot in the result."""

    kind: Literal[PrimitiveKind.DISABLED] = field(default=PrimitiveKind.DISABLED, init=False)


Operation = (
    Lookup1DOp
    | Lookup2DOp
    | ScalarMultiplyOp
    | ConditionalGateOp
    | AggregateOp
    | RatioOp
    | ConstantOp
    | WeightedBlendOp
    | TemporalWindowOp
    | DisabledOp
)


@dataclass(frozen=True)
class Proration:
    numerator: ValueSource
    denominator: ValueSource


@dataclass(frozen=True)
class Modifiers:
    """Post-processing applied to a component output, in order: proration, floor, cap."""

    cap: float | None = None
    floor: float | None = None
    proration: Proration | None = None

    @property
    def is_empty(self) -> bool:
        return self.cap is None and self.floor is None and self.proration is None


# ---------------------------------------------------------------------------
# Plan
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CompiledComponent:
    component_id: str
    name: str
    order: int
    operation: Operation
    modifiers: Modifiers = field(default_factory=Modifiers)
    signature: PatternSignature | None = None

    @property
    def enabled(self) -> bool:
        return not isinstance(self.operation, DisabledOp)


@dataclass(frozen=True)
class CompiledVariant:
    variant_id: str
    name: str
    eligibility: tuple[tuple[str, str], ...]
    components: tuple[CompiledComponent, ...]

    def matches(self, attributes: dict[str, Any]) -> bool:
        return all(str(attributes.get(key)) == value for key, value in self.eligibility)


@dataclass(frozen=True)
class CompiledPlan:
    """Executable plan. Built only by the plan compiler."""

    rule_set_id: UUID
    tenant_id: UUID
    domain_id: str
    variants: tuple[CompiledVariant, ...]

    def select_variant(self, attributes: dict[str, Any]) -> CompiledVariant:
        """First eligible variant, else the first default variant, else the first."""
        for variant in self.variants:
            if variant.eligibility and variant.matches(attributes):
                return variant
        for variant in self.variants:
            if not variant.eligibility:
                return variant
        return self.variants[0]

    def components(self) -> list[CompiledComponent]:
        return [c for variant in self.variants for c in variant.components]

    def signatures(self) -> list[PatternSignature]:
        """Distinct pattern signatures in plan order."""
        seen: dict[str, PatternSignature] = {}
        for component in self.components():
            if component.signature is not None:
                seen.setdefault(component.signature.key, component.signature)
        return list(seen.values())

    def signature_map(self) -> dict[tuple[str, str], str]:
        """(variant_id, component_id) -> signature key.

        Variants may reuse a component id with a different shape, so the
        variant is part of the key.
        """
        return {
            (variant.variant_id, component.component_id): component.signature.key
            for variant in self.variants
            for component in variant.components
            if component.signature is not None
        }

    @property
    def max_lookback(self) -> int:
        """Deepest history any component needs, in prior periods."""
        depth = 0
        for component in self.components():
            op = component.operation
            if isinstance(op, (TemporalWindowOp, AggregateOp)):
                depth = max(depth, op.lookback)
        return depth

    @property
    def group_attributes(self) -> frozenset[str]:
        """Attributes used for group-level aggregation."""
        return frozenset(
            c.operation.group_by
            for c in self.components()
            if isinstance(c.operation, AggregateOp)
            and c.operation.dimension == AggregateDimension.GROUP
            and c.operation.group_by
        )
