"""Result models — CalculationResult (immutable), CalculationBatch, RunOutcome."""

from typing import Any
from uuid import UUID

from pydantic import Field

from incentiveos.models.common import (
    BatchStatus,
    IncentiveOSBase,
    ResultStatus,
    UTCTimestamp,
    UUIDv7,
    new_uuid7,
    utc_now,
)


class ComponentOutcome(IncentiveOSBase, frozen=True):
    """Output of one component for one entity.

    ``gap`` names the resolution gap that zeroed the component, if any.
    """

    component_id: str
    name: str
    order: int
    value: float
    enabled: bool = True
    gap: str | None = None


class CalculationResult(IncentiveOSBase, frozen=True):
    """Immutable per-entity result. Corrections are new rows in a later batch."""

    result_id: UUIDv7 = Field(default_factory=new_uuid7)
    batch_id: UUID
    tenant_id: UUID
    entity_id: UUID
    period_id: UUID
    rule_set_id: UUID
    variant_id: str
    components: list[ComponentOutcome] = Field(default_factory=list)
    total_payout: float
    status: ResultStatus = ResultStatus.SUCCESS
    partial: bool = False
    trace: list[dict[str, Any]] = Field(
        default_factory=list,
        description="Per-component trace entries; content depends on execution mode.",
    )
    created_at: UTCTimestamp = Field(default_factory=utc_now)


class CalculationBatch(IncentiveOSBase):
    """One calculation run over a period for a rule set."""

    batch_id: UUIDv7 = Field(default_factory=new_uuid7)
    tenant_id: UUID
    period_id: UUID
    rule_set_id: UUID
    status: BatchStatus = BatchStatus.RUNNING
    entity_count: int = 0
    total_payout: float = 0.0
    summary: dict[str, Any] = Field(default_factory=dict)
    created_at: UTCTimestamp = Field(default_factory=utc_now)


class RunOutcome(IncentiveOSBase, frozen=True):
    """Summary returned by the calculation control surface."""

    success: bool
    total_payout: float = 0.0
    entity_count: int = 0
    batch_id: UUID | None = None
    error: str | None = None
