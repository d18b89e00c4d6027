"""Tests for the domain viability gates and per-tenant evaluation."""

import pytest
from uuid_extensions import uuid7

from incentiveos.domain.registry import FRANCHISE_DOMAIN, ICM_DOMAIN, REBATE_DOMAIN
from incentiveos.domain.viability import (
    DataShapeProfile,
    DomainDefinition,
    DomainViabilityService,
    GateName,
    InMemoryViabilityStore,
    OutcomeProfile,
    ReconciliationProfile,
    ScaleProfile,
    ViabilityScore,
    evaluate_domain_viability,
)


def _make_domain(**kwargs: object) -> DomainDefinition:
    return DomainDefinition(
        domain_id=str(kwargs.pop("domain_id", "candidate")),
        required_primitives=kwargs.pop("required_primitives", ["scalar_multiply", "aggregate"]),
        **kwargs,
    )


class TestEvaluate:
    """Five gates and the overall score."""

    @pytest.mark.parametrize("domain", [ICM_DOMAIN, REBATE_DOMAIN, FRANCHISE_DOMAIN])
    def test_builtin_domains_are_natural_fit(self, domain: DomainDefinition) -> None:
        report = evaluate_domain_viability(domain)
        assert report.score == ViabilityScore.NATURAL_FIT
        assert report.passed_count == 5

    def test_missing_primitive_fails_rule_gate(self) -> None:
        report = evaluate_domain_viability(
            _make_domain(required_primitives=["scalar_multiply", "monte_carlo", "optimizer"]),
        )
        gate = report.gates[GateName.RULE_EXPRESSIBILITY]
        assert not gate.passed
        assert gate.grade == pytest.approx(1 / 3, abs=1e-4)
        assert report.missing_primitives == ["monte_carlo", "optimizer"]
        assert report.score == ViabilityScore.PARTIAL_FIT

    @pytest.mark.parametrize(("gate_name", "overrides"), [
        (GateName.RULE_EXPRESSIBILITY, {"required_primitives": ["scalar_multiply", "monte_carlo"]}),
        (GateName.DATA_SHAPE_COMPATIBILITY, {"data_shape": DataShapeProfile(period_keyed=False)}),
        (GateName.OUTCOME_SEMANTICS, {"outcome": OutcomeProfile(numeric=False)}),
        (GateName.RECONCILIATION_APPLICABILITY, {"reconciliation": ReconciliationProfile(tolerance=None)}),
        (GateName.SCALE_PROFILE, {"scale": ScaleProfile(expected_entities=10**9)}),
    ])
    def test_single_gate_failure_is_partial_fit(self, gate_name: GateName, overrides: dict[str, object]) -> None:
        report = evaluate_domain_viability(_make_domain(**overrides))
        failed = [name for name, gate in report.gates.items() if not gate.passed]
        assert failed == [gate_name]
        assert report.passed_count == 4
        assert report.score == ViabilityScore.PARTIAL_FIT

    def test_no_rule_patterns_fails(self) -> None:
        report = evaluate_domain_viability(_make_domain(required_primitives=[]))
        assert not report.gates[GateName.RULE_EXPRESSIBILITY].passed
        assert report.gates[GateName.RULE_EXPRESSIBILITY].detail == "no rule patterns declared"

    def test_three_failures_not_viable(self) -> None:
        report = evaluate_domain_viability(_make_domain(
            data_shape=DataShapeProfile(tabular=False),
            outcome=OutcomeProfile(additive_components=False),
            reconciliation=ReconciliationProfile(has_expectation_source=False),
        ))
        assert report.passed_count == 2
        assert report.score == ViabilityScore.NOT_VIABLE
        assert report.gates[GateName.DATA_SHAPE_COMPATIBILITY].detail == "failed: tabular"

    def test_scale_gate(self) -> None:
        report = evaluate_domain_viability(
            _make_domain(scale=ScaleProfile(per_entity_external_calls=1, max_lookback_periods=24)),
            max_lookback=12,
        )
        gate = report.gates[GateName.SCALE_PROFILE]
        assert not gate.passed
        assert "no_per_entity_external_calls" in gate.detail
        assert "lookback_within_limit" in gate.detail
        assert report.score == ViabilityScore.PARTIAL_FIT

    def test_to_dict(self) -> None:
        data = evaluate_domain_viability(ICM_DOMAIN).to_dict()
        assert data["score"] == "natural_fit"
        assert set(data["gates"]) == {str(g) for g in GateName}


class TestViabilityService:
    """One evaluation per domain and tenant."""

    @pytest.mark.anyio
    async def test_evaluates_once_per_tenant(self) -> None:
        store = InMemoryViabilityStore()
        service = DomainViabilityService(store)
        tenant = uuid7()

        first = await service.evaluate_for_tenant(REBATE_DOMAIN, tenant)
        second = await service.evaluate_for_tenant(REBATE_DOMAIN, tenant)
        other = await service.evaluate_for_tenant(REBATE_DOMAIN, uuid7())

        assert first is second
        assert other is not first
        assert first.score == ViabilityScore.NATURAL_FIT
        assert await store.get("rebate", tenant) == first
