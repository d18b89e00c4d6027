"""Plan compiler — stored rule-set configuration to an executable plan.

Every component config is validated against a per-type schema and lowered
to a compiled operation. Compilation either returns a complete
``CompiledPlan`` or raises ``PlanCompilationError`` listing every issue found
across all variants, never only the first.

Component type mapping:
    tier_lookup            -> bounded_lookup_1d
    matrix_lookup          -> bounded_lookup_2d
    percentage             -> scalar_multiply
    conditional_percentage -> conditional_gate
    direct                 -> constant
    aggregate / ratio / weighted_blend / temporal_window map to the
    primitive of the same name.

Deterministic — no I/O.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from incentiveos.compiler.operations import (
    AggregateDimension,
    AggregateOp,
    CompiledComponent,
    CompiledPlan,
    CompiledVariant,
    ConditionalGateOp,
    ConstantOp,
    ConstantSource,
    DisabledOp,
    Lookup1DOp,
    Lookup2DOp,
    MetricSource,
    Modifiers,
    Operation,
    Proration,
    RatioOp,
    RatioSource,
    ScalarMultiplyOp,
    TemporalWindowOp,
    ValueSource,
    WeightedBlendOp,
)
from incentiveos.engine.primitives import Band, GateCondition, Tier, WindowReducer
from incentiveos.engine.signature import build_signature
from incentiveos.models.common import ComponentType
from incentiveos.models.plan import Component, RuleSet

logger = logging.getLogger(__name__)

DEFAULT_MAX_LOOKBACK = 12


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CompileIssue:
    variant_id: str | None
    component_id: str | None
    field: str
    message: str

    def __str__(self) -> str:
        where = "/".join(p for p in (self.variant_id, self.component_id) if p)
        return f"{where or 'rule_set'}: {self.field}: {self.message}"


class PlanCompilationError(ValueError):
    """Raised when a rule set cannot be compiled. Carries every issue."""

    def __init__(self, issues: list[CompileIssue]) -> None:
        self.issues = issues
        summary = "; ".join(str(issue) for issue in issues[:5])
        more = f" (+{len(issues) - 5} more)" if len(issues) > 5 else ""
        super().__init__(f"{len(issues)} plan configuration issue(s): {summary}{more}")


# ---------------------------------------------------------------------------
# Config schemas
# ---------------------------------------------------------------------------


class _ConfigModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")


class RatioSourceConfig(_ConfigModel):
    numerator: str = Field(..., min_length=1)
    denominator: str = Field(..., min_length=1)


class ConstantSourceConfig(_ConfigModel):
    constant: float


# A bare string names a metric.
SourceConfig = str | RatioSourceConfig | ConstantSourceConfig


class BandConfig(_ConfigModel):
    min: float | None = None
    max: float | None = None

    @model_validator(mode="after")
    def _check_order(self) -> BandConfig:
        if self.min is not None and self.max is not None and self.min >= self.max:
            msg = f"band min {self.min} must be below max {self.max}"
            raise ValueError(msg)
        return self


class TierConfig(BandConfig):
    value: float


def _check_ascending(bands: list[Any]) -> list[Any]:
    """Bands on one axis must be ascending and must not overlap; gaps are allowed."""
    for index, (lower, upper) in enumerate(zip(bands, bands[1:]), start=1):
        if lower.max is None or upper.min is None or upper.min < lower.max:
            msg = f"band {index} overlaps or precedes band {index - 1}; bands must be ascending and disjoint"
            raise ValueError(msg)
    return bands


class ConditionConfig(BandConfig):
    rate: float
    metric: SourceConfig | None = None


class ProrationConfig(_ConfigModel):
    numerator: SourceConfig
    denominator: SourceConfig


class _ComponentConfig(_ConfigModel):
    max_payout: float | None = Field(default=None, alias="maxPayout")
    min_payout: float | None = Field(default=None, alias="minPayout")
    proration: ProrationConfig | None = None


class TierLookupConfig(_ComponentConfig):
    metric: SourceConfig
    tiers: list[TierConfig] = Field(..., min_length=1)

    @field_validator("tiers")
    @classmethod
    def _ascending_tiers(cls, tiers: list[TierConfig]) -> list[TierConfig]:
        return _check_ascending(tiers)


class MatrixLookupConfig(_ComponentConfig):
    row_metric: SourceConfig = Field(..., alias="rowMetric")
    column_metric: SourceConfig = Field(..., alias="columnMetric")
    row_bands: list[BandConfig] = Field(..., min_length=1, alias="rowBands")
    column_bands: list[BandConfig] = Field(..., min_length=1, alias="columnBands")
    values: list[list[float]] = Field(..., min_length=1)

    @field_validator("row_bands", "column_bands")
    @classmethod
    def _ascending_bands(cls, bands: list[BandConfig]) -> list[BandConfig]:
        return _check_ascending(bands)

    @model_validator(mode="after")
    def _check_grid(self) -> MatrixLookupConfig:
        widths = {len(row) for row in self.values}
        if len(widths) != 1:
            msg = "matrix rows must all have the same length"
            raise ValueError(msg)
        shape = (len(self.values), widths.pop())
        expected = (len(self.row_bands), len(self.column_bands))
        if shape != expected:
            msg = f"matrix shape {shape} does not match bands {expected}"
            raise ValueError(msg)
        return self


class PercentageConfig(_ComponentConfig):
    applied_to: SourceConfig = Field(..., alias="appliedTo")
    rate: float
    min_threshold: float | None = Field(default=None, alias="minThreshold")


class ConditionalPercentageConfig(_ComponentConfig):
    applied_to: SourceConfig = Field(..., alias="appliedTo")
    driver_metric: SourceConfig | None = Field(default=None, alias="driverMetric")
    conditions: list[ConditionConfig] = Field(..., min_length=1)

    @model_validator(mode="after")
    def _check_drivers(self) -> ConditionalPercentageConfig:
        if self.driver_metric is None and any(c.metric is None for c in self.conditions):
            msg = "every condition needs a metric when driver_metric is not set"
            raise ValueError(msg)
        return self


class DirectConfig(_ComponentConfig):
    value: float


class AggregateConfig(_ComponentConfig):
    metric: str = Field(..., min_length=1)
    dimension: AggregateDimension = AggregateDimension.ENTITY
    group_by: str | None = Field(default=None, alias="groupBy")
    lookback: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _check_dimension(self) -> AggregateConfig:
        if self.dimension == AggregateDimension.GROUP and not self.group_by:
            msg = "group aggregation requires group_by"
            raise ValueError(msg)
        if self.dimension == AggregateDimension.WINDOW and self.lookback < 1:
            msg = "window aggregation requires lookback >= 1"
            raise ValueError(msg)
        return self


class RatioConfig(_ComponentConfig):
    numerator: SourceConfig
    denominator: SourceConfig


class BlendInputConfig(_ConfigModel):
    component_id: str = Field(..., min_length=1, alias="componentId")
    weight: float


class WeightedBlendConfig(_ComponentConfig):
    sources: list[BlendInputConfig] = Field(..., min_length=1)


class TemporalWindowConfig(_ComponentConfig):
    metric: SourceConfig
    lookback: int = Field(..., ge=0)
    reducer: WindowReducer = WindowReducer.AVG
    include_current: bool = Field(default=True, alias="includeCurrent")


# ---------------------------------------------------------------------------
# Lowering
# ---------------------------------------------------------------------------


def _source(config: SourceConfig) -> ValueSource:
    if isinstance(config, str):
        return MetricSource(config)
    if isinstance(config, RatioSourceConfig):
        return RatioSource(config.numerator, config.denominator)
    return ConstantSource(config.constant)


def _band(config: BandConfig) -> Band:
    return Band(min=config.min, max=config.max)


def _lower_tier_lookup(c: TierLookupConfig) -> Operation:
    tiers = tuple(Tier(band=_band(t), value=t.value) for t in c.tiers)
    return Lookup1DOp(source=_source(c.metric), tiers=tiers)


def _lower_matrix_lookup(c: MatrixLookupConfig) -> Operation:
    matrix = np.asarray(c.values, dtype=np.float64)
    matrix.setflags(write=False)
    return Lookup2DOp(
        row_source=_source(c.row_metric),
        column_source=_source(c.column_metric),
        row_bands=tuple(_band(b) for b in c.row_bands),
        column_bands=tuple(_band(b) for b in c.column_bands),
        matrix=matrix,
    )


def _lower_percentage(c: PercentageConfig) -> Operation:
    return ScalarMultiplyOp(base=_source(c.applied_to), rate=c.rate, min_threshold=c.min_threshold)


def _lower_conditional(c: ConditionalPercentageConfig) -> Operation:
    drivers = tuple(
        _source(cond.metric if cond.metric is not None else c.driver_metric)
        for cond in c.conditions
    )
    conditions = tuple(GateCondition(band=_band(cond), rate=cond.rate) for cond in c.conditions)
    return ConditionalGateOp(applied_to=_source(c.applied_to), drivers=drivers, conditions=conditions)


def _lower_direct(c: DirectConfig) -> Operation:
    return ConstantOp(value=c.value)


def _lower_aggregate(c: AggregateConfig) -> Operation:
    return AggregateOp(metric=c.metric, dimension=c.dimension, group_by=c.group_by, lookback=c.lookback)


def _lower_ratio(c: RatioConfig) -> Operation:
    return RatioOp(numerator=_source(c.numerator), denominator=_source(c.denominator))


def _lower_blend(c: WeightedBlendConfig) -> Operation:
    return WeightedBlendOp(
        component_ids=tuple(s.component_id for s in c.sources),
        weights=tuple(s.weight for s in c.sources),
    )


def _lower_temporal(c: TemporalWindowConfig) -> Operation:
    return TemporalWindowOp(
        source=_source(c.metric),
        lookback=c.lookback,
        reducer=c.reducer,
        include_current=c.include_current,
    )


_SCHEMAS: dict[ComponentType, tuple[type[_ComponentConfig], Callable[[Any], Operation]]] = {
    ComponentType.TIER_LOOKUP: (TierLookupConfig, _lower_tier_lookup),
    ComponentType.MATRIX_LOOKUP: (MatrixLookupConfig, _lower_matrix_lookup),
    ComponentType.PERCENTAGE: (PercentageConfig, _lower_percentage),
    ComponentType.CONDITIONAL_PERCENTAGE: (ConditionalPercentageConfig, _lower_conditional),
    ComponentType.DIRECT: (DirectConfig, _lower_direct),
    ComponentType.AGGREGATE: (AggregateConfig, _lower_aggregate),
    ComponentType.RATIO: (RatioConfig, _lower_ratio),
    ComponentType.WEIGHTED_BLEND: (WeightedBlendConfig, _lower_blend),
    ComponentType.TEMPORAL_WINDOW: (TemporalWindowConfig, _lower_temporal),
}


def _modifiers(c: _ComponentConfig) -> Modifiers:
    proration = None
    if c.proration is not None:
        proration = Proration(
            numerator=_source(c.proration.numerator),
            denominator=_source(c.proration.denominator),
        )
    return Modifiers(cap=c.max_payout, floor=c.min_payout, proration=proration)


def _issue_field(loc: tuple[Any, ...]) -> str:
    return ".".join(["config", *(str(part) for part in loc)])


# ---------------------------------------------------------------------------
# Compiler
# ---------------------------------------------------------------------------


class PlanCompiler:
    """Compile a ``RuleSet`` into a ``CompiledPlan``.

    Parameters
    ----------
    max_lookback:
        Deepest history a temporal or window-aggregate component may ask for.
    """

    def __init__(self, max_lookback: int = DEFAULT_MAX_LOOKBACK) -> None:
        self._max_lookback = max_lookback

    def compile(self, rule_set: RuleSet) -> CompiledPlan:
        """Compile every variant of a rule set.

        Raises:
            PlanCompilationError: With every issue found.
        """
        issues: list[CompileIssue] = []
        if not rule_set.variants:
            issues.append(CompileIssue(None, None, "variants", "rule set has no variants"))

        variants: list[CompiledVariant] = []
        seen_variant_ids: set[str] = set()
        for variant in rule_set.variants:
            if variant.variant_id in seen_variant_ids:
                issues.append(CompileIssue(variant.variant_id, None, "variant_id", "duplicate variant id"))
            seen_variant_ids.add(variant.variant_id)

            compiled: list[CompiledComponent] = []
            preceding: list[str] = []
            ordered = sorted(variant.components, key=lambda comp: comp.order)
            for component in ordered:
                result = self._compile_component(rule_set, variant.variant_id, component, preceding, issues)
                preceding.append(component.component_id)
                if result is not None:
                    compiled.append(result)

            variants.append(CompiledVariant(
                variant_id=variant.variant_id,
                name=variant.name,
                eligibility=tuple(sorted((k, str(v)) for k, v in variant.eligibility.items())),
                components=tuple(compiled),
            ))

        if issues:
            logger.info(
                "Rule set %s failed compilation with %d issue(s)", rule_set.rule_set_id, len(issues),
            )
            raise PlanCompilationError(issues)

        return CompiledPlan(
            rule_set_id=rule_set.rule_set_id,
            tenant_id=rule_set.tenant_id,
            domain_id=rule_set.domain_id,
            variants=tuple(variants),
        )

    def _compile_component(
        self,
        rule_set: RuleSet,
        variant_id: str,
        component: Component,
        preceding: list[str],
        issues: list[CompileIssue],
    ) -> CompiledComponent | None:
        cid = component.component_id

        def report(field: str, message: str) -> None:
            issues.append(CompileIssue(variant_id, cid, field, message))

        if cid in preceding:
            report("component_id", "duplicate component id in variant")

        if not component.enabled:
            return CompiledComponent(cid, component.name, component.order, DisabledOp())

        try:
            component_type = ComponentType(component.component_type)
        except ValueError:
            report("component_type", f"unknown component type '{component.component_type}'")
            return None

        schema, lower = _SCHEMAS[component_type]
        try:
            config = schema.model_validate(component.config)
        except ValidationError as exc:
            for error in exc.errors():
                report(_issue_field(error["loc"]), error["msg"])
            return None

        operation = lower(config)
        failed = False
        if isinstance(operation, (TemporalWindowOp, AggregateOp)) and operation.lookback > self._max_lookback:
            report("config.lookback", f"lookback {operation.lookback} exceeds maximum {self._max_lookback}")
            failed = True
        if isinstance(operation, WeightedBlendOp):
            for ref in operation.component_ids:
                if ref not in preceding:
                    report("config.sources", f"'{ref}' is not an earlier component of this variant")
                    failed = True
        if failed:
            return None

        modifiers = _modifiers(config)
        return CompiledComponent(
            component_id=cid,
            name=component.name,
            order=component.order,
            operation=operation,
            modifiers=modifiers,
            signature=build_signature(rule_set.rule_set_id, cid, operation, modifiers),
        )


def compile_plan(rule_set: RuleSet, max_lookback: int = DEFAULT_MAX_LOOKBACK) -> CompiledPlan:
    """Convenience wrapper around ``PlanCompiler``."""
    return PlanCompiler(max_lookback=max_lookback).compile(rule_set)
