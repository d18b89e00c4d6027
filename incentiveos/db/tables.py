"""SQLAlchemy ORM table models for IncentiveOS.

Uses FlexJSON (JSONB on Postgres, JSON on SQLite) for nested plan, row,
trace, and payload data.

Categories:
- IMMUTABLE: CommittedDataRow, CalculationResultRow, SignalRow (append-only)
- OPERATIONAL: RuleSetRow, EntityRow, PeriodRow, CalculationBatchRow
  (status updates allowed)
- LEARNED: PatternRow, FoundationalPatternRow, DomainPatternRow,
  DomainViabilityRow (mutated by the flywheel)
"""

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from incentiveos.db.session import Base

# JSONB on PostgreSQL, plain JSON on SQLite (for tests)
FlexJSON = JSONB().with_variant(JSON(), "sqlite")


# ---------------------------------------------------------------------------
# Plans
# ---------------------------------------------------------------------------


class RuleSetRow(Base):
    """Versioned compensation plan; variants and components stored as JSON."""

    __tablename__ = "rule_sets"

    rule_set_id: Mapped[UUID] = mapped_column(primary_key=True)
    tenant_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")
    domain_id: Mapped[str] = mapped_column(String(50), nullable=False, default="icm")
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[date | None] = mapped_column(Date, nullable=True)
    variants: Mapped[list] = mapped_column(FlexJSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("tenant_id", "name", "version", name="uq_rule_set_name_version"),
    )


# ---------------------------------------------------------------------------
# Performance data
# ---------------------------------------------------------------------------


class EntityRow(Base):
    __tablename__ = "entities"

    entity_id: Mapped[UUID] = mapped_column(primary_key=True)
    tenant_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    external_id: Mapped[str] = mapped_column(String(255), nullable=False)
    display_name: Mapped[str] = mapped_column(String(255), default="")
    entity_type: Mapped[str] = mapped_column(String(20), nullable=False, default="individual")
    attributes: Mapped[dict] = mapped_column(FlexJSON, nullable=False, default=dict)
    parent_entity_id: Mapped[UUID | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("tenant_id", "external_id", name="uq_entity_external_id"),
    )


class PeriodRow(Base):
    __tablename__ = "periods"

    period_id: Mapped[UUID] = mapped_column(primary_key=True)
    tenant_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    canonical_key: Mapped[str] = mapped_column(String(50), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="open")

    __table_args__ = (
        UniqueConstraint("tenant_id", "canonical_key", name="uq_period_canonical_key"),
    )


class CommittedDataRow(Base):
    """Imported performance row. Read-only for the calculation engine."""

    __tablename__ = "committed_data"

    row_id: Mapped[UUID] = mapped_column(primary_key=True)
    tenant_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    entity_id: Mapped[UUID | None] = mapped_column(nullable=True, index=True)
    period_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    row_data: Mapped[dict] = mapped_column(FlexJSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Calculation output
# ---------------------------------------------------------------------------


class CalculationBatchRow(Base):
    __tablename__ = "calculation_batches"

    batch_id: Mapped[UUID] = mapped_column(primary_key=True)
    tenant_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    period_id: Mapped[UUID] = mapped_column(nullable=False)
    rule_set_id: Mapped[UUID] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    entity_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_payout: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    summary: Mapped[dict] = mapped_column(FlexJSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class CalculationResultRow(Base):
    """Immutable per-entity result. Corrections are new rows in a later batch."""

    __tablename__ = "calculation_results"

    result_id: Mapped[UUID] = mapped_column(primary_key=True)
    batch_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    tenant_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    entity_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    period_id: Mapped[UUID] = mapped_column(nullable=False)
    rule_set_id: Mapped[UUID] = mapped_column(nullable=False)
    variant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    components: Mapped[list] = mapped_column(FlexJSON, nullable=False, default=list)
    total_payout: Mapped[float] = mapped_column(Float, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="success")
    partial: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    trace: Mapped[list] = mapped_column(FlexJSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("batch_id", "entity_id", name="uq_result_batch_entity"),
    )


# ---------------------------------------------------------------------------
# Flywheel
# ---------------------------------------------------------------------------


class PatternRow(Base):
    """Tenant pattern density. Deleted wholesale by nuclear clear."""

    __tablename__ = "patterns"

    row_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    signature: Mapped[str] = mapped_column(String(300), nullable=False)
    density: Mapped[float] = mapped_column(Float, nullable=False)
    sample_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    agreement_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    learned_behaviors: Mapped[dict] = mapped_column(FlexJSON, nullable=False, default=dict)
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("tenant_id", "signature", name="uq_pattern_tenant_signature"),
    )


class FoundationalPatternRow(Base):
    """Cross-tenant prior. No tenant column."""

    __tablename__ = "foundational_patterns"

    structural_key: Mapped[str] = mapped_column(String(100), primary_key=True)
    confidence_mean: Mapped[float] = mapped_column(Float, nullable=False)
    total_executions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tenant_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    anomaly_rate_mean: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    learned_behaviors: Mapped[dict] = mapped_column(FlexJSON, nullable=False, default=dict)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class DomainPatternRow(Base):
    """Domain-scoped prior. No tenant column."""

    __tablename__ = "domain_patterns"

    row_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    structural_key: Mapped[str] = mapped_column(String(100), nullable=False)
    domain_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    confidence_mean: Mapped[float] = mapped_column(Float, nullable=False)
    total_executions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tenant_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    learned_behaviors: Mapped[dict] = mapped_column(FlexJSON, nullable=False, default=dict)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("domain_id", "structural_key", name="uq_domain_pattern_key"),
    )


class SignalRow(Base):
    """Append-only training signal."""

    __tablename__ = "signals"

    signal_id: Mapped[UUID] = mapped_column(primary_key=True)
    tenant_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    signal_type: Mapped[str] = mapped_column(String(30), nullable=False)
    agent_type: Mapped[str] = mapped_column(String(30), nullable=False)
    signature: Mapped[str | None] = mapped_column(String(300), nullable=True)
    payload: Mapped[dict] = mapped_column(FlexJSON, nullable=False, default=dict)
    confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    batch_id: Mapped[UUID | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)


class DomainViabilityRow(Base):
    """One Domain Viability Test verdict per (domain, tenant)."""

    __tablename__ = "domain_viability"

    row_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    domain_id: Mapped[str] = mapped_column(String(50), nullable=False)
    tenant_id: Mapped[UUID] = mapped_column(nullable=False)
    score: Mapped[str] = mapped_column(String(20), nullable=False)
    gates: Mapped[dict] = mapped_column(FlexJSON, nullable=False, default=dict)
    missing_primitives: Mapped[list] = mapped_column(FlexJSON, nullable=False, default=list)
    evaluated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("domain_id", "tenant_id", name="uq_domain_viability_tenant"),
    )
