"""Performance data models — Entity, Period, CommittedRow.

Committed rows are read-only for the calculation engine.
"""

from datetime import date
from typing import Any
from uuid import UUID

from pydantic import Field

from incentiveos.models.common import (
    EntityType,
    IncentiveOSBase,
    PeriodStatus,
    UTCTimestamp,
    UUIDv7,
    new_uuid7,
    utc_now,
)


class Entity(IncentiveOSBase):
    """A payee: an individual or a location."""

    entity_id: UUIDv7 = Field(default_factory=new_uuid7)
    tenant_id: UUID
    external_id: str = Field(..., min_length=1)
    display_name: str = ""
    entity_type: EntityType = EntityType.INDIVIDUAL
    attributes: dict[str, Any] = Field(default_factory=dict)
    parent_entity_id: UUID | None = None


class Period(IncentiveOSBase):
    """A performance period, unique per tenant by ``canonical_key``."""

    period_id: UUIDv7 = Field(default_factory=new_uuid7)
    tenant_id: UUID
    canonical_key: str = Field(..., min_length=1)
    start_date: date
    end_date: date
    status: PeriodStatus = PeriodStatus.OPEN


class CommittedRow(IncentiveOSBase, frozen=True):
    """One imported row of performance data.

    ``entity_id`` is None for location-level rows that are not attributed to
    a single payee; those rows are only reachable through group aggregation.
    """

    row_id: UUIDv7 = Field(default_factory=new_uuid7)
    tenant_id: UUID
    entity_id: UUID | None = None
    period_id: UUID
    row_data: dict[str, Any] = Field(default_factory=dict)
    created_at: UTCTimestamp = Field(default_factory=utc_now)
