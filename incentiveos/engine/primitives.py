"""Computation primitives — the vocabulary every compiled component resolves to.

Pure deterministic functions: no I/O, no clock, no randomness. Given the
same inputs, ALWAYS produces the same outputs.

Band convention: every interval is half-open ``[min, max)``; ``None`` on
either side is unbounded. The same convention applies to 1D tiers and to
both axes of a 2D grid, so a value sitting exactly on a boundary always
belongs to the band that starts there.
"""

import math
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

import numpy as np


# ---------------------------------------------------------------------------
# Resolution gaps
# ---------------------------------------------------------------------------


class ResolutionGap(Exception):
    """Missing or out-of-range input for one component of one entity.

    Gaps never abort a run: the executor zeroes the component, records the
    gap ``code`` and moves on.
    """

    code = "resolution_gap"


class MissingMetric(ResolutionGap):
    code = "missing_metric"

    def __init__(self, metric: str) -> None:
        super().__init__(f"metric '{metric}' not present in entity data")
        self.metric = metric


class NoBandMatch(ResolutionGap):
    code = "no_band_match"

    def __init__(self, value: float) -> None:
        super().__init__(f"value {value} falls outside every band")
        self.value = value


class EmptyWindow(ResolutionGap):
    code = "empty_window"


class NonNumericOutput(ResolutionGap):
    code = "non_numeric_output"


# ---------------------------------------------------------------------------
# Bands
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Band:
    """Half-open interval ``[min, max)``. ``None`` means unbounded."""

    min: float | None = None
    max: float | None = None

    def contains(self, value: float) -> bool:
        if self.min is not None and value < self.min:
            return False
        if self.max is not None and value >= self.max:
            return False
        return True

    def on_lower_edge(self, value: float) -> bool:
        """True when the value sits exactly on the inclusive lower boundary."""
        return self.min is not None and value == self.min


@dataclass(frozen=True)
class Tier:
    """A 1D band with the value it yields."""

    band: Band
    value: Any


@dataclass(frozen=True)
class GateCondition:
    """Range condition on a driver metric with the rate it applies."""

    band: Band
    rate: float


class WindowReducer(StrEnum):
    AVG = "avg"
    SUM = "sum"
    MAX = "max"


def to_number(value: Any) -> float:
    """Coerce a stored value to float; numeric strings are accepted."""
    if isinstance(value, bool):
        raise NonNumericOutput(f"boolean {value!r} is not a numeric value")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.replace(",", "").strip())
        except ValueError:
            raise NonNumericOutput(f"{value!r} is not numeric") from None
    raise NonNumericOutput(f"{type(value).__name__} is not numeric")


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


def resolve_band(value: float, bands: Sequence[Band]) -> int:
    """Return the index of the first band containing ``value``.

    Raises:
        NoBandMatch: If no band contains the value.
    """
    for index, band in enumerate(bands):
        if band.contains(value):
            return index
    raise NoBandMatch(value)


def bounded_lookup_1d(value: float, tiers: Sequence[Tier]) -> Any:
    """Return the value of the lowest tier containing ``value``.

    ``tiers`` must be in ascending order of their lower bound.
    """
    index = resolve_band(value, [tier.band for tier in tiers])
    return tiers[index].value


def bounded_lookup_2d(
    row_value: float,
    column_value: float,
    row_bands: Sequence[Band],
    column_bands: Sequence[Band],
    matrix: np.ndarray,
) -> float:
    """Resolve both axes independently, then index the grid."""
    row_index = resolve_band(row_value, row_bands)
    column_index = resolve_band(column_value, column_bands)
    return float(matrix[row_index, column_index])


# ---------------------------------------------------------------------------
# Arithmetic
# ---------------------------------------------------------------------------


def scalar_multiply(base: float, rate: float) -> float:
    return base * rate


def ratio(numerator: float, denominator: float) -> float:
    """Divide, yielding 0.0 for a zero denominator."""
    if denominator == 0:
        return 0.0
    return numerator / denominator


def constant(value: float) -> float:
    return float(value)


def conditional_gate(
    applied_to: float,
    driver_values: Sequence[float],
    conditions: Sequence[GateCondition],
) -> float:
    """Apply the rate of the first condition whose band holds its driver.

    ``driver_values[i]`` is the driver metric value for ``conditions[i]``.
    No matching condition yields 0.0.
    """
    if len(driver_values) != len(conditions):
        msg = f"{len(driver_values)} driver values but {len(conditions)} conditions."
        raise ValueError(msg)
    for driver, condition in zip(driver_values, conditions):
        if condition.band.contains(driver):
            return applied_to * condition.rate
    return 0.0


def aggregate(rows: Iterable[Mapping[str, Any]], metric: str) -> float:
    """Sum ``metric`` across a row set. Rows without the metric are skipped.

    Raises:
        MissingMetric: If no row carries the metric.
    """
    values = [to_number(row[metric]) for row in rows if row.get(metric) is not None]
    if not values:
        raise MissingMetric(metric)
    return math.fsum(values)


def weighted_blend(values: Sequence[float], weights: Sequence[float]) -> float:
    """Weighted sum of prior component outputs. Weights are not normalised."""
    if len(values) != len(weights):
        msg = f"{len(values)} values but {len(weights)} weights."
        raise ValueError(msg)
    if not values:
        return 0.0
    return float(np.dot(np.asarray(values, dtype=np.float64), np.asarray(weights, dtype=np.float64)))


def temporal_window(
    history: Sequence[float],
    current: float | None,
    lookback: int,
    reducer: WindowReducer,
    include_current: bool = True,
) -> float:
    """Reduce the last ``lookback`` prior-period values (plus current).

    ``history`` is ordered oldest to newest and must already be in memory.

    Raises:
        EmptyWindow: If there is nothing to reduce.
    """
    window = list(history[-lookback:]) if lookback > 0 else []
    if include_current and current is not None:
        window.append(current)
    if not window:
        raise EmptyWindow("no values in temporal window")

    arr = np.asarray(window, dtype=np.float64)
    if reducer == WindowReducer.AVG:
        return float(arr.mean())
    if reducer == WindowReducer.SUM:
        return float(arr.sum())
    return float(arr.max())


# ---------------------------------------------------------------------------
# Modifiers
# ---------------------------------------------------------------------------


def apply_cap(value: float, cap: float) -> float:
    return min(value, cap)


def apply_floor(value: float, floor: float) -> float:
    return max(value, floor)


def apply_proration(value: float, numerator: float, denominator: float) -> float:
    """Scale by ``numerator / denominator``; a zero denominator yields 0.0."""
    return value * ratio(numerator, denominator)
