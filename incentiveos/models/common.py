"""Shared types, enums, and base models used across IncentiveOS domain models."""

from datetime import datetime, timezone
from enum import StrEnum
from typing import Annotated
from uuid import UUID

from pydantic import BaseModel, Field
from uuid_extensions import uuid7


def utc_now() -> datetime:
    """Return the current UTC timestamp (timezone-aware)."""
    return datetime.now(tz=timezone.utc)


def new_uuid7() -> UUID:
    """Generate a new time-sortable UUID v7."""
    return uuid7()


# --- Reusable annotated types ---

UUIDv7 = Annotated[UUID, Field(description="Time-sortable UUID v7.")]
UTCTimestamp = Annotated[
    datetime, Field(description="UTC timezone-aware timestamp.")
]


# --- Shared enums ---


class RuleSetStatus(StrEnum):
    """Lifecycle status of a rule set version."""

    DRAFT = "draft"
    ACTIVE = "active"
    ARCHIVED = "archived"


class ComponentType(StrEnum):
    """Component types accepted in stored plan configuration."""

    TIER_LOOKUP = "tier_lookup"
    MATRIX_LOOKUP = "matrix_lookup"
    PERCENTAGE = "percentage"
    CONDITIONAL_PERCENTAGE = "conditional_percentage"
    DIRECT = "direct"
    AGGREGATE = "aggregate"
    RATIO = "ratio"
    WEIGHTED_BLEND = "weighted_blend"
    TEMPORAL_WINDOW = "temporal_window"


class PrimitiveKind(StrEnum):
    """Computation primitives a compiled component resolves to."""

    BOUNDED_LOOKUP_1D = "bounded_lookup_1d"
    BOUNDED_LOOKUP_2D = "bounded_lookup_2d"
    SCALAR_MULTIPLY = "scalar_multiply"
    CONDITIONAL_GATE = "conditional_gate"
    AGGREGATE = "aggregate"
    RATIO = "ratio"
    CONSTANT = "constant"
    WEIGHTED_BLEND = "weighted_blend"
    TEMPORAL_WINDOW = "temporal_window"
    DISABLED = "disabled"


class ExecutionMode(StrEnum):
    """Trace verbosity chosen per pattern from its density."""

    FULL_TRACE = "full_trace"
    LIGHT_TRACE = "light_trace"
    SILENT = "silent"


class EntityType(StrEnum):
    """Kind of payee a result is computed for."""

    INDIVIDUAL = "individual"
    LOCATION = "location"


class PeriodStatus(StrEnum):
    """Lifecycle of a performance period."""

    OPEN = "open"
    CALCULATING = "calculating"
    CLOSED = "closed"


class BatchStatus(StrEnum):
    """Status of a calculation batch."""

    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class ResultStatus(StrEnum):
    """Status of an entity result row."""

    SUCCESS = "success"


class SignalType(StrEnum):
    """Categories of training signal in the append-only signal log."""

    FIELD_MAPPING = "field_mapping"
    INTERPRETATION = "interpretation"
    RECONCILIATION = "reconciliation"
    RESOLUTION = "resolution"
    DENSITY = "density"


class AgentType(StrEnum):
    """Agents that load priors from agent memory."""

    INGESTION = "ingestion"
    INTERPRETATION = "interpretation"
    CALCULATION = "calculation"
    RECONCILIATION = "reconciliation"
    INSIGHT = "insight"
    RESOLUTION = "resolution"


# --- Base model ---


class IncentiveOSBase(BaseModel):
    """Base model with common configuration for all IncentiveOS Pydantic models."""

    model_config = {
        "populate_by_name": True,
        "protected_namespaces": (),
    }
