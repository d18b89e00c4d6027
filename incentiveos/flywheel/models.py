"""Flywheel models: tenant patterns, cross-tenant priors, and signals.

Foundational and domain patterns carry no tenant id. They are keyed by the
structural part of a signature only, so nothing tenant-specific crosses the
privacy boundary.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from pydantic import Field

from incentiveos.models.common import (
    AgentType,
    IncentiveOSBase,
    SignalType,
    UTCTimestamp,
    UUIDv7,
    new_uuid7,
    utc_now,
)


class Pattern(IncentiveOSBase, frozen=True):
    """Learned confidence in one pattern for one tenant."""

    tenant_id: UUID
    signature: str = Field(..., min_length=1)
    density: float = Field(..., ge=0.0, le=1.0)
    sample_count: int = Field(default=0, ge=0)
    agreement_count: int = Field(default=0, ge=0)
    learned_behaviors: dict[str, Any] = Field(default_factory=dict)
    last_updated: UTCTimestamp = Field(default_factory=utc_now)


class FoundationalPattern(IncentiveOSBase, frozen=True):
    """Cross-tenant prior for a structural key."""

    structural_key: str = Field(..., min_length=1)
    confidence_mean: float = Field(..., ge=0.0, le=1.0)
    total_executions: int = Field(default=0, ge=0)
    tenant_count: int = Field(default=0, ge=0)
    anomaly_rate_mean: float = Field(default=0.0, ge=0.0, le=1.0)
    learned_behaviors: dict[str, Any] = Field(default_factory=dict)
    updated_at: UTCTimestamp = Field(default_factory=utc_now)


class DomainPattern(IncentiveOSBase, frozen=True):
    """Cross-tenant prior for a structural key within one domain."""

    structural_key: str = Field(..., min_length=1)
    domain_id: str = Field(..., min_length=1)
    confidence_mean: float = Field(..., ge=0.0, le=1.0)
    total_executions: int = Field(default=0, ge=0)
    tenant_count: int = Field(default=0, ge=0)
    learned_behaviors: dict[str, Any] = Field(default_factory=dict)
    updated_at: UTCTimestamp = Field(default_factory=utc_now)


class PriorEntry(IncentiveOSBase, frozen=True):
    """A prior as seen by agents. ``discounted`` marks cold-start scaling."""

    confidence: float = Field(..., ge=0.0, le=1.0)
    total_executions: int = 0
    learned_behaviors: dict[str, Any] = Field(default_factory=dict)
    discounted: bool = False


class Signal(IncentiveOSBase, frozen=True):
    """Append-only training signal."""

    signal_id: UUIDv7 = Field(default_factory=new_uuid7)
    tenant_id: UUID
    signal_type: SignalType
    agent_type: AgentType
    signature: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    batch_id: UUID | None = None
    created_at: UTCTimestamp = Field(default_factory=utc_now)
