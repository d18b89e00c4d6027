"""Initial schema — plans, performance data, results, flywheel, domains.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # -- Plans --
    op.create_table(
        "rule_sets",
        sa.Column("rule_set_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("status", sa.String(20), nullable=False, server_default="draft"),
        sa.Column("domain_id", sa.String(50), nullable=False, server_default="icm"),
        sa.Column("effective_from", sa.Date, nullable=False),
        sa.Column("effective_to", sa.Date, nullable=True),
        sa.Column("variants", JSONB, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("tenant_id", "name", "version", name="uq_rule_set_name_version"),
    )

    # -- Performance data --
    op.create_table(
        "entities",
        sa.Column("entity_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("external_id", sa.String(255), nullable=False),
        sa.Column("display_name", sa.String(255), server_default=""),
        sa.Column("entity_type", sa.String(20), nullable=False, server_default="individual"),
        sa.Column("attributes", JSONB, nullable=False),
        sa.Column("parent_entity_id", UUID(as_uuid=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("tenant_id", "external_id", name="uq_entity_external_id"),
    )

    op.create_table(
        "periods",
        sa.Column("period_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("canonical_key", sa.String(50), nullable=False),
        sa.Column("start_date", sa.Date, nullable=False),
        sa.Column("end_date", sa.Date, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="open"),
        sa.UniqueConstraint("tenant_id", "canonical_key", name="uq_period_canonical_key"),
    )

    # -- Performance data (IMMUTABLE) --
    op.create_table(
        "committed_data",
        sa.Column("row_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("entity_id", UUID(as_uuid=True), nullable=True, index=True),
        sa.Column("period_id", UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("row_data", JSONB, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    # -- Calculation output --
    op.create_table(
        "calculation_batches",
        sa.Column("batch_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("period_id", UUID(as_uuid=True), nullable=False),
        sa.Column("rule_set_id", UUID(as_uuid=True), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("entity_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_payout", sa.Float, nullable=False, server_default="0"),
        sa.Column("summary", JSONB, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    # -- Calculation output (IMMUTABLE) --
    op.create_table(
        "calculation_results",
        sa.Column("result_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("batch_id", UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("position", sa.Integer, nullable=False),
        sa.Column("entity_id", UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("period_id", UUID(as_uuid=True), nullable=False),
        sa.Column("rule_set_id", UUID(as_uuid=True), nullable=False),
        sa.Column("variant_id", sa.String(100), nullable=False),
        sa.Column("components", JSONB, nullable=False),
        sa.Column("total_payout", sa.Float, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="success"),
        sa.Column("partial", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("trace", JSONB, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("batch_id", "entity_id", name="uq_result_batch_entity"),
    )

    # -- Flywheel (LEARNED) --
    op.create_table(
        "patterns",
        sa.Column("row_id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("signature", sa.String(300), nullable=False),
        sa.Column("density", sa.Float, nullable=False),
        sa.Column("sample_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("agreement_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("learned_behaviors", JSONB, nullable=False),
        sa.Column("last_updated", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("tenant_id", "signature", name="uq_pattern_tenant_signature"),
    )

    op.create_table(
        "foundational_patterns",
        sa.Column("structural_key", sa.String(100), primary_key=True),
        sa.Column("confidence_mean", sa.Float, nullable=False),
        sa.Column("total_executions", sa.Integer, nullable=False, server_default="0"),
        sa.Column("tenant_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("anomaly_rate_mean", sa.Float, nullable=False, server_default="0"),
        sa.Column("learned_behaviors", JSONB, nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "domain_patterns",
        sa.Column("row_id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("structural_key", sa.String(100), nullable=False),
        sa.Column("domain_id", sa.String(50), nullable=False, index=True),
        sa.Column("confidence_mean", sa.Float, nullable=False),
        sa.Column("total_executions", sa.Integer, nullable=False, server_default="0"),
        sa.Column("tenant_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("learned_behaviors", JSONB, nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("domain_id", "structural_key", name="uq_domain_pattern_key"),
    )

    # -- Flywheel (IMMUTABLE) --
    op.create_table(
        "signals",
        sa.Column("signal_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("signal_type", sa.String(30), nullable=False),
        sa.Column("agent_type", sa.String(30), nullable=False),
        sa.Column("signature", sa.String(300), nullable=True),
        sa.Column("payload", JSONB, nullable=False),
        sa.Column("confidence", sa.Float, nullable=True),
        sa.Column("batch_id", UUID(as_uuid=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, index=True),
    )

    # -- Domains --
    op.create_table(
        "domain_viability",
        sa.Column("row_id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("domain_id", sa.String(50), nullable=False),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False),
        sa.Column("score", sa.String(20), nullable=False),
        sa.Column("gates", JSONB, nullable=False),
        sa.Column("missing_primitives", JSONB, nullable=False),
        sa.Column("evaluated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("domain_id", "tenant_id", name="uq_domain_viability_tenant"),
    )


def downgrade() -> None:
    for table in (
        "domain_viability",
        "signals",
        "domain_patterns",
        "foundational_patterns",
        "patterns",
        "calculation_results",
        "calculation_batches",
        "committed_data",
        "periods",
        "entities",
        "rule_sets",
    ):
        op.drop_table(table)
