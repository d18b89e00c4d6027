"""Tests for pattern signatures and shape hashing."""

from uuid import UUID

import numpy as np
from uuid_extensions import uuid7

from incentiveos.compiler.operations import (
    Lookup1DOp,
    Lookup2DOp,
    MetricSource,
    Modifiers,
    RatioSource,
    ScalarMultiplyOp,
)
from incentiveos.engine.primitives import Band, Tier
from incentiveos.engine.signature import PatternSignature, build_signature, describe_shape, shape_hash
from incentiveos.models.common import PrimitiveKind


def _make_lookup(metric: str, values: tuple[float, ...]) -> Lookup1DOp:
    return Lookup1DOp(
        source=MetricSource(metric),
        tiers=(Tier(Band(0, 80), values[0]), Tier(Band(80, None), values[1])),
    )


class TestShapeHash:
    """Shape covers structure, never names or values."""

    def test_names_and_values_do_not_change_hash(self) -> None:
        a = _make_lookup("attainment", (0, 500))
        b = _make_lookup("quota_pct", (10, 9000))
        assert shape_hash(a) == shape_hash(b)

    def test_band_count_changes_hash(self) -> None:
        a = _make_lookup("attainment", (0, 500))
        b = Lookup1DOp(
            source=MetricSource("attainment"),
            tiers=(Tier(Band(0, 50), 0), Tier(Band(50, 80), 1), Tier(Band(80, None), 2)),
        )
        assert shape_hash(a) != shape_hash(b)

    def test_source_kind_changes_hash(self) -> None:
        a = ScalarMultiplyOp(base=MetricSource("sales"), rate=0.05)
        b = ScalarMultiplyOp(base=RatioSource("sales", "quota"), rate=0.05)
        assert shape_hash(a) != shape_hash(b)

    def test_modifiers_change_hash(self) -> None:
        op = ScalarMultiplyOp(base=MetricSource("sales"), rate=0.05)
        assert shape_hash(op) != shape_hash(op, Modifiers(cap=500.0))

    def test_describe_2d(self) -> None:
        op = Lookup2DOp(
            row_source=MetricSource("attainment"),
            column_source=MetricSource("store_sales"),
            row_bands=(Band(0, 100), Band(100, None)),
            column_bands=(Band(0, 10), Band(10, 20), Band(20, None)),
            matrix=np.zeros((2, 3)),
        )
        shape = describe_shape(op)
        assert shape["grid"] == [2, 3]
        assert shape["kind"] == "bounded_lookup_2d"

    def test_hash_is_stable(self) -> None:
        op = _make_lookup("attainment", (0, 500))
        assert shape_hash(op) == shape_hash(_make_lookup("attainment", (0, 500)))
        assert len(shape_hash(op)) == 16


class TestPatternSignature:
    def test_key_and_structural_key(self) -> None:
        rule_set_id = uuid7()
        signature = build_signature(rule_set_id, "c1", _make_lookup("attainment", (0, 500)))
        assert signature.key.startswith(f"{rule_set_id}:c1:bounded_lookup_1d:")
        assert signature.structural_key == f"bounded_lookup_1d:{signature.shape_hash}"
        assert str(rule_set_id) not in signature.structural_key

    def test_parse_round_trip_with_colon_in_component_id(self) -> None:
        signature = PatternSignature(
            rule_set_id=UUID("01234567-89ab-7def-8123-456789abcdef"),
            component_id="store:bonus",
            primitive_kind=PrimitiveKind.CONSTANT,
            shape_hash="0123456789abcdef",
        )
        assert PatternSignature.parse(signature.key) == signature
