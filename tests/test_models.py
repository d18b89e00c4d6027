"""Tests for the pydantic domain models."""

from datetime import date, timezone

import pytest
from pydantic import ValidationError
from uuid_extensions import uuid7

from incentiveos.models.common import RuleSetStatus
from incentiveos.models.data import CommittedRow, Entity
from incentiveos.models.plan import Component, RuleSet, Variant
from incentiveos.models.result import CalculationResult, RunOutcome


def _make_rule_set(**overrides) -> RuleSet:
    fields = {
        "tenant_id": uuid7(),
        "name": "Retail 2026",
        "effective_from": date(2026, 1, 1),
    }
    fields.update(overrides)
    return RuleSet(**fields)


class TestRuleSet:
    """Defaults and effective dating."""

    def test_defaults(self) -> None:
        rule_set = _make_rule_set()
        assert rule_set.status == RuleSetStatus.DRAFT
        assert rule_set.version == 1
        assert rule_set.domain_id == "icm"
        assert rule_set.created_at.tzinfo == timezone.utc

    def test_effective_window_is_inclusive(self) -> None:
        rule_set = _make_rule_set(effective_to=date(2026, 6, 30))
        assert not rule_set.is_effective_on(date(2025, 12, 31))
        assert rule_set.is_effective_on(date(2026, 1, 1))
        assert rule_set.is_effective_on(date(2026, 6, 30))
        assert not rule_set.is_effective_on(date(2026, 7, 1))

    def test_open_ended(self) -> None:
        assert _make_rule_set().is_effective_on(date(2099, 1, 1))

    def test_version_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            _make_rule_set(version=0)


class TestComponentAndVariant:
    """Stored plan configuration."""

    def test_component_type_accepts_alias_and_name(self) -> None:
        by_alias = Component(component_id="c1", name="C1", componentType="percentage")
        by_name = Component(component_id="c1", name="C1", component_type="percentage")
        assert by_alias.component_type == by_name.component_type == "percentage"

    def test_unknown_component_type_is_stored(self) -> None:
        component = Component(component_id="c1", name="C1", componentType="mystery")
        assert component.component_type == "mystery"

    def test_variant_matching_compares_as_strings(self) -> None:
        variant = Variant(variant_id="certified", eligibility={"certified": "True", "level": "2"})
        assert variant.matches({"certified": True, "level": 2})
        assert not variant.matches({"certified": False, "level": 2})
        assert not variant.matches({})

    def test_default_variant_matches_everything(self) -> None:
        assert Variant(variant_id="default").matches({"anything": 1})


class TestImmutability:
    """Committed rows and results cannot be changed in place."""

    def test_committed_row_is_frozen(self) -> None:
        row = CommittedRow(tenant_id=uuid7(), period_id=uuid7(), row_data={"sales": 10})
        with pytest.raises(ValidationError):
            row.row_data = {}

    def test_result_is_frozen(self) -> None:
        result = CalculationResult(
            batch_id=uuid7(), tenant_id=uuid7(), entity_id=uuid7(), period_id=uuid7(),
            rule_set_id=uuid7(), variant_id="default", total_payout=10.0,
        )
        with pytest.raises(ValidationError):
            result.total_payout = 0.0

    def test_entity_is_mutable(self) -> None:
        entity = Entity(tenant_id=uuid7(), external_id="E1")
        entity.display_name = "Ana"
        assert entity.display_name == "Ana"

    def test_run_outcome_defaults(self) -> None:
        outcome = RunOutcome(success=False, error="boom")
        assert outcome.batch_id is None
        assert outcome.entity_count == 0
