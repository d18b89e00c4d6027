"""Plan models — RuleSet, Variant, Component.

A rule set is the stored, declarative form of a compensation plan. It is
compiled into an executable plan before any entity is evaluated.
"""

from datetime import date
from typing import Any
from uuid import UUID

from pydantic import Field

from incentiveos.models.common import (
    IncentiveOSBase,
    RuleSetStatus,
    UTCTimestamp,
    UUIDv7,
    new_uuid7,
    utc_now,
)


class Component(IncentiveOSBase):
    """One payout component of a variant.

    ``component_type`` is kept as a plain string so that unknown types are
    reported by the compiler together with every other configuration issue.
    """

    component_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    order: int = Field(default=0)
    enabled: bool = True
    component_type: str = Field(..., alias="componentType")
    config: dict[str, Any] = Field(default_factory=dict)


class Variant(IncentiveOSBase):
    """A population slice of a plan with its own components."""

    variant_id: str = Field(..., min_length=1)
    name: str = ""
    eligibility: dict[str, str] = Field(
        default_factory=dict,
        description="Entity attribute → required value. Empty means default variant.",
    )
    components: list[Component] = Field(default_factory=list)

    def matches(self, attributes: dict[str, Any]) -> bool:
        """True when every eligibility attribute equals the entity's value."""
        return all(
            str(attributes.get(key)) == str(value)
            for key, value in self.eligibility.items()
        )


class RuleSet(IncentiveOSBase):
    """Versioned compensation plan for one tenant."""

    rule_set_id: UUIDv7 = Field(default_factory=new_uuid7)
    tenant_id: UUID
    name: str = Field(..., min_length=1)
    version: int = Field(default=1, ge=1)
    status: RuleSetStatus = RuleSetStatus.DRAFT
    domain_id: str = Field(default="icm")
    effective_from: date
    effective_to: date | None = None
    variants: list[Variant] = Field(default_factory=list)
    created_at: UTCTimestamp = Field(default_factory=utc_now)

    def is_effective_on(self, on_date: date) -> bool:
        if on_date < self.effective_from:
            return False
        return self.effective_to is None or on_date <= self.effective_to
