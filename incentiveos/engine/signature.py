"""Pattern signatures — stable identity of a component's computational shape.

A signature is ``rule_set_id:component_id:primitive_kind:shape_hash``. The
shape hash covers the structure of the inputs (source kinds, band counts,
grid dimensions, reducer, lookback, modifier kinds), never metric names or
values, so ``structural_key`` (``primitive_kind:shape_hash``) can be shared
across tenants without leaking plan content.

Deterministic: the same operation hashes identically in every process.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from incentiveos.compiler.operations import (
    AggregateOp,
    ConditionalGateOp,
    ConstantOp,
    DisabledOp,
    Lookup1DOp,
    Lookup2DOp,
    Modifiers,
    Operation,
    RatioOp,
    ScalarMultiplyOp,
    TemporalWindowOp,
    ValueSource,
    WeightedBlendOp,
)
from incentiveos.models.common import PrimitiveKind

SHAPE_HASH_LENGTH = 16


@dataclass(frozen=True)
class PatternSignature:
    rule_set_id: UUID
    component_id: str
    primitive_kind: PrimitiveKind
    shape_hash: str

    @property
    def key(self) -> str:
        return f"{self.rule_set_id}:{self.component_id}:{self.primitive_kind}:{self.shape_hash}"

    @property
    def structural_key(self) -> str:
        """Tenant-free key used for foundational and domain priors."""
        return f"{self.primitive_kind}:{self.shape_hash}"

    @classmethod
    def parse(cls, key: str) -> PatternSignature:
        rule_set_id, rest = key.split(":", 1)
        component_id, kind, digest = rest.rsplit(":", 2)
        return cls(UUID(rule_set_id), component_id, PrimitiveKind(kind), digest)


def _source_shape(source: ValueSource) -> str:
    return source.kind


def describe_shape(operation: Operation, modifiers: Modifiers | None = None) -> dict[str, Any]:
    """Structural description of an operation, free of names and values."""
    match operation:
        case Lookup1DOp():
            shape: dict[str, Any] = {
                "source": _source_shape(operation.source),
                "bands": len(operation.tiers),
                "open_top": operation.tiers[-1].band.max is None,
            }
        case Lookup2DOp():
            shape = {
                "row": _source_shape(operation.row_source),
                "column": _source_shape(operation.column_source),
                "grid": [len(operation.row_bands), len(operation.column_bands)],
            }
        case ScalarMultiplyOp():
            shape = {
                "base": _source_shape(operation.base),
                "gated": operation.min_threshold is not None,
            }
        case ConditionalGateOp():
            shape = {
                "applied_to": _source_shape(operation.applied_to),
                "drivers": [_source_shape(d) for d in operation.drivers],
                "conditions": len(operation.conditions),
            }
        case AggregateOp():
            shape = {"dimension": str(operation.dimension), "lookback": operation.lookback}
        case RatioOp():
            shape = {
                "numerator": _source_shape(operation.numerator),
                "denominator": _source_shape(operation.denominator),
            }
        case ConstantOp():
            shape = {}
        case WeightedBlendOp():
            shape = {"inputs": len(operation.component_ids)}
        case TemporalWindowOp():
            shape = {
                "source": _source_shape(operation.source),
                "lookback": operation.lookback,
                "reducer": str(operation.reducer),
                "include_current": operation.include_current,
            }
        case DisabledOp():
            shape = {}

    shape["kind"] = str(operation.kind)
    if modifiers is not None and not modifiers.is_empty:
        shape["modifiers"] = sorted(
            name for name in ("cap", "floor", "proration")
            if getattr(modifiers, name) is not None
        )
    return shape


def shape_hash(operation: Operation, modifiers: Modifiers | None = None) -> str:
    canonical = json.dumps(describe_shape(operation, modifiers), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:SHAPE_HASH_LENGTH]


def build_signature(
    rule_set_id: UUID,
    component_id: str,
    operation: Operation,
    modifiers: Modifiers | None = None,
) -> PatternSignature:
    return PatternSignature(
        rule_set_id=rule_set_id,
        component_id=component_id,
        primitive_kind=PrimitiveKind(operation.kind),
        shape_hash=shape_hash(operation, modifiers),
    )
