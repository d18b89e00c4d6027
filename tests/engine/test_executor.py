"""Tests for the intent executor."""

from dataclasses import replace
from datetime import date
from typing import Any
from uuid import UUID

import pytest
from uuid_extensions import uuid7

from incentiveos.compiler.operations import CompiledPlan
from incentiveos.compiler.plan_compiler import compile_plan
from incentiveos.engine.cancellation import CancellationToken, RunCancelledError
from incentiveos.engine.executor import IntentExecutor
from incentiveos.engine.preload import PreloadedWindow
from incentiveos.models.common import ExecutionMode
from incentiveos.models.data import Entity
from incentiveos.models.plan import Component, RuleSet, Variant

TENANT = uuid7()


def _make_component(component_id: str, order: int, component_type: str, **config: Any) -> Component:
    return Component(
        component_id=component_id,
        name=component_id.replace("_", " ").title(),
        order=order,
        componentType=component_type,
        config=config,
    )


def _make_plan(*components: Component, variants: list[Variant] | None = None) -> CompiledPlan:
    rule_set = RuleSet(
        tenant_id=TENANT,
        name="Retail 2026",
        effective_from=date(2026, 1, 1),
        variants=variants or [Variant(variant_id="default", components=list(components))],
    )
    return compile_plan(rule_set)


def _make_standard_plan() -> CompiledPlan:
    return _make_plan(
        _make_component(
            "attainment_bonus", 1, "tier_lookup",
            metric="attainment",
            tiers=[
                {"min": 0, "max": 80, "value": 0},
                {"min": 80, "max": 100, "value": 500},
                {"min": 100, "value": 1000},
            ],
        ),
        _make_component("commission", 2, "percentage", appliedTo="sales", rate=0.05),
        _make_component(
            "blend", 3, "weighted_blend",
            sources=[
                {"componentId": "attainment_bonus", "weight": 0.5},
                {"componentId": "commission", "weight": 0.5},
            ],
        ),
    )


def _make_window(
    metrics: dict[str, dict[str, float]],
    attributes: dict[str, dict[str, Any]] | None = None,
    history: dict[str, list[dict[str, float]]] | None = None,
) -> tuple[PreloadedWindow, dict[str, UUID]]:
    attributes = attributes or {}
    history = history or {}
    entities = {
        ext: Entity(tenant_id=TENANT, external_id=ext, attributes=attributes.get(ext, {}))
        for ext in sorted(metrics)
    }
    ids = {ext: e.entity_id for ext, e in entities.items()}
    window = PreloadedWindow(
        tenant_id=TENANT,
        period_id=uuid7(),
        entity_ids=tuple(ids[ext] for ext in sorted(metrics)),
        entities={e.entity_id: e for e in entities.values()},
        rows={ids[ext]: [dict(m)] for ext, m in metrics.items()},
        metrics={ids[ext]: dict(m) for ext, m in metrics.items()},
        history={ids[ext]: h for ext, h in history.items()},
    )
    return window, ids


def _full_trace(plan: CompiledPlan) -> dict[str, ExecutionMode]:
    return {s.key: ExecutionMode.FULL_TRACE for s in plan.signatures()}


class TestExecute:
    """Batch evaluation over a preloaded window."""

    def test_zero_input_is_success_with_zero_total(self) -> None:
        plan = _make_standard_plan()
        window, _ = _make_window({})
        report = IntentExecutor().execute(plan, window, _full_trace(plan))
        assert report.results == []
        assert report.total_payout == 0.0

    def test_component_values_and_total(self) -> None:
        plan = _make_standard_plan()
        window, ids = _make_window({"E1": {"attainment": 100, "sales": 2000}})

        result = IntentExecutor().execute(plan, window, _full_trace(plan)).results[0]

        values = {c.component_id: c.value for c in result.components}
        assert values == {"attainment_bonus": 1000.0, "commission": 100.0, "blend": 550.0}
        assert result.total_payout == pytest.approx(1650.0)
        assert result.entity_id == ids["E1"]
        assert not result.partial

    def test_determinism_across_chunks_and_workers(self) -> None:
        plan = _make_standard_plan()
        metrics = {f"E{i}": {"attainment": 70 + i * 5, "sales": 1000 + i} for i in range(9)}
        window, _ = _make_window(metrics)
        modes = _full_trace(plan)

        single = IntentExecutor(max_workers=1, chunk_size=100).execute(plan, window, modes)
        pooled = IntentExecutor(max_workers=4, chunk_size=2).execute(plan, window, modes)

        assert single.results == pooled.results
        assert [r.entity_id for r in pooled.results] == list(window.entity_ids)

    def test_gap_zeroes_only_its_component(self) -> None:
        plan = _make_standard_plan()
        window, _ = _make_window({"E1": {"attainment": 90}})

        report = IntentExecutor().execute(plan, window, _full_trace(plan))
        result = report.results[0]

        by_id = {c.component_id: c for c in result.components}
        assert by_id["commission"].value == 0.0
        assert by_id["commission"].gap == "missing_metric"
        assert by_id["attainment_bonus"].value == 500.0
        assert by_id["blend"].value == 250.0
        assert result.partial
        assert report.partial_count == 1

    def test_observations_count_gap_free_evaluations(self) -> None:
        plan = _make_standard_plan()
        window, _ = _make_window({"E1": {"attainment": 90}, "E2": {"attainment": 90, "sales": 10}})

        report = IntentExecutor().execute(plan, window, _full_trace(plan))

        commission = next(s for s in plan.signatures() if s.component_id == "commission")
        observation = report.observations[commission.key]
        assert (observation.observations, observation.agreements) == (2, 1)
        assert observation.agreement_rate == 0.5

    def test_cancelled_before_start(self) -> None:
        plan = _make_standard_plan()
        window, _ = _make_window({"E1": {"attainment": 90, "sales": 10}})
        token = CancellationToken()
        token.cancel()
        with pytest.raises(RunCancelledError):
            IntentExecutor().execute(plan, window, _full_trace(plan), cancellation=token)

    def test_entity_subset(self) -> None:
        plan = _make_standard_plan()
        window, ids = _make_window({"E1": {"attainment": 90}, "E2": {"attainment": 100}})
        report = IntentExecutor().execute(plan, window, _full_trace(plan), entity_ids=[ids["E2"]])
        assert [r.entity_id for r in report.results] == [ids["E2"]]

    def test_invalid_pool_settings(self) -> None:
        with pytest.raises(ValueError):
            IntentExecutor(max_workers=0)


class TestComponents:
    """Component-level behaviour inside one entity."""

    def test_nested_blend(self) -> None:
        plan = _make_plan(
            _make_component("a", 1, "direct", value=100),
            _make_component("b", 2, "direct", value=80),
            _make_component(
                "blend_ab", 3, "weighted_blend",
                sources=[{"componentId": "a", "weight": 0.6}, {"componentId": "b", "weight": 0.4}],
            ),
            _make_component(
                "blend_final", 4, "weighted_blend",
                sources=[{"componentId": "blend_ab", "weight": 0.75}, {"componentId": "a", "weight": 0.25}],
            ),
        )
        window, _ = _make_window({"E1": {}})
        result = IntentExecutor().execute(plan, window, _full_trace(plan)).results[0]
        by_id = {c.component_id: c.value for c in result.components}
        assert by_id["blend_ab"] == pytest.approx(92.0)
        assert by_id["blend_final"] == pytest.approx(94.0)

    def test_disabled_component_contributes_zero(self) -> None:
        disabled = Component(
            component_id="legacy", name="Legacy", order=2, enabled=False,
            componentType="direct", config={"value": 999},
        )
        plan = _make_plan(_make_component("base", 1, "direct", value=50), disabled)
        window, _ = _make_window({"E1": {}})

        result = IntentExecutor().execute(plan, window, _full_trace(plan)).results[0]

        legacy = next(c for c in result.components if c.component_id == "legacy")
        assert legacy.value == 0.0
        assert not legacy.enabled
        assert result.total_payout == 50.0
        assert [e["component_id"] for e in result.trace] == ["base"]

    def test_matrix_lookup(self) -> None:
        plan = _make_plan(_make_component(
            "matrix", 1, "matrix_lookup",
            rowMetric="attainment",
            columnMetric="store_sales",
            rowBands=[{"min": 0, "max": 100}, {"min": 100}],
            columnBands=[{"min": 0, "max": 50000}, {"min": 50000}],
            values=[[100, 200], [300, 400]],
        ))
        window, _ = _make_window({"E1": {"attainment": 100, "store_sales": 50000}})
        result = IntentExecutor().execute(plan, window, _full_trace(plan)).results[0]
        assert result.total_payout == 400.0
        assert result.trace[0]["band_index"] == [1, 1]
        assert result.trace[0]["boundary_edge"] is True

    def test_conditional_percentage(self) -> None:
        plan = _make_plan(_make_component(
            "warranty", 1, "conditional_percentage",
            appliedTo="warranty_sales",
            driverMetric="attainment",
            conditions=[{"min": 0, "max": 100, "rate": 0.02}, {"min": 100, "rate": 0.04}],
        ))
        window, _ = _make_window({"E1": {"attainment": 105, "warranty_sales": 1000}})
        result = IntentExecutor().execute(plan, window, _full_trace(plan)).results[0]
        assert result.total_payout == pytest.approx(40.0)

    def test_percentage_below_threshold(self) -> None:
        plan = _make_plan(_make_component(
            "commission", 1, "percentage", appliedTo="sales", rate=0.1, minThreshold=500,
        ))
        window, _ = _make_window({"E1": {"sales": 400}})
        result = IntentExecutor().execute(plan, window, _full_trace(plan)).results[0]
        assert result.total_payout == 0.0
        assert result.trace[0]["gated"] is True

    def test_group_aggregate(self) -> None:
        plan = _make_plan(_make_component(
            "store_total", 1, "aggregate", metric="sales", dimension="group", groupBy="store",
        ))
        window, ids = _make_window(
            {"E1": {"sales": 10}, "E2": {"sales": 30}},
            attributes={"E1": {"store": "S1"}, "E2": {"store": "S1"}},
        )
        group_rows = {("store", "S1"): [{"sales": 10}, {"sales": 30}, {"sales": 60}]}
        window = replace(window, group_rows=group_rows)
        report = IntentExecutor().execute(plan, window, _full_trace(plan))
        assert [r.total_payout for r in report.results] == [100.0, 100.0]

    def test_temporal_window_average(self) -> None:
        plan = _make_plan(_make_component(
            "attainment_avg", 1, "temporal_window", metric="attainment", lookback=3, reducer="avg",
        ))
        window, _ = _make_window(
            {"E1": {"attainment": 90}},
            history={"E1": [{"attainment": 90}, {"attainment": 92}, {"attainment": 93}]},
        )
        result = IntentExecutor().execute(plan, window, _full_trace(plan)).results[0]
        assert result.total_payout == pytest.approx(91.25)

    def test_modifiers_applied_in_order(self) -> None:
        plan = _make_plan(_make_component(
            "commission", 1, "percentage",
            appliedTo="sales", rate=0.1, maxPayout=250, minPayout=10,
            proration={"numerator": "days_active", "denominator": "days_in_period"},
        ))
        window, _ = _make_window({"E1": {"sales": 6000, "days_active": 15, "days_in_period": 30}})
        result = IntentExecutor().execute(plan, window, _full_trace(plan)).results[0]
        assert result.total_payout == 250.0
        steps = [m["modifier"] for m in result.trace[0]["modifiers"]]
        assert steps == ["proration", "floor", "cap"]

    def test_variant_selection(self) -> None:
        plan = _make_plan(variants=[
            Variant(variant_id="default", components=[_make_component("base", 1, "direct", value=10)]),
            Variant(
                variant_id="managers",
                eligibility={"role": "manager"},
                components=[_make_component("base", 1, "direct", value=20)],
            ),
        ])
        window, ids = _make_window(
            {"E1": {}, "E2": {}},
            attributes={"E1": {"role": "manager"}, "E2": {"role": "associate"}},
        )
        report = IntentExecutor().execute(plan, window, _full_trace(plan))
        by_entity = {r.entity_id: r for r in report.results}
        assert by_entity[ids["E1"]].variant_id == "managers"
        assert by_entity[ids["E2"]].variant_id == "default"
        assert by_entity[ids["E1"]].total_payout == 20.0


class TestTraceByMode:
    """Trace content follows the pattern's execution mode."""

    def test_full_light_silent(self) -> None:
        plan = _make_standard_plan()
        bonus, commission, blend = plan.signatures()
        modes = {
            bonus.key: ExecutionMode.FULL_TRACE,
            commission.key: ExecutionMode.LIGHT_TRACE,
            blend.key: ExecutionMode.SILENT,
        }
        window, _ = _make_window({"E1": {"attainment": 80, "sales": 2000}})

        trace = IntentExecutor().execute(plan, window, modes).results[0].trace

        assert [e["component_id"] for e in trace] == ["attainment_bonus", "commission"]
        full, light = trace
        assert full["mode"] == "full_trace"
        assert full["primitive"] == "bounded_lookup_1d"
        assert full["signature"] == bonus.key
        assert full["band_index"] == 1
        assert full["boundary_edge"] is True
        assert light == {"component_id": "commission", "mode": "light_trace", "output": 100.0, "gap": None}

    def test_missing_mode_defaults_to_full_trace(self) -> None:
        plan = _make_standard_plan()
        window, _ = _make_window({"E1": {"attainment": 80, "sales": 2000}})
        trace = IntentExecutor().execute(plan, window, {}).results[0].trace
        assert {e["mode"] for e in trace} == {"full_trace"}
