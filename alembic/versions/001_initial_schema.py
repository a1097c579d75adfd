"""Initial schema.

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _normalized_table(name: str, *columns: sa.Column) -> None:
    op.create_table(
        name,
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("bar_id", sa.Integer, sa.ForeignKey("bars.id", ondelete="CASCADE"), nullable=False),
        sa.Column("source_key", sa.String(255), nullable=False),
        sa.Column("raw_record_id", sa.Integer, sa.ForeignKey("raw_records.id"), nullable=False),
        sa.Column("business_date", sa.Date, nullable=False),
        *columns,
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("bar_id", "source_key"),
    )
    op.create_index(f"ix_{name}_bar_date", name, ["bar_id", "business_date"])


def _summary_identity() -> list[sa.Column]:
    return [
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("bar_id", sa.Integer, sa.ForeignKey("bars.id", ondelete="CASCADE"), nullable=False),
        sa.Column("period_key", sa.String(10), nullable=False),
        sa.Column("granularity", sa.String(10), nullable=False),
        sa.Column("period_start", sa.Date, nullable=False),
        sa.Column("period_end", sa.Date, nullable=False),
    ]


def upgrade() -> None:
    # BARS
    op.create_table(
        "bars",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("slug", sa.String(100), unique=True, nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("active", sa.Boolean, default=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()")),
    )

    # SOURCE_CONFIGS
    op.create_table(
        "source_configs",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("bar_id", sa.Integer, sa.ForeignKey("bars.id", ondelete="CASCADE"), nullable=False),
        sa.Column("source_type", sa.String(50), nullable=False),
        sa.Column("config_json", postgresql.JSONB),
        sa.Column("active", sa.Boolean, default=True),
        sa.Column("last_successful_run", sa.DateTime(timezone=True)),
        sa.Column("failure_count", sa.Integer, default=0),
        sa.UniqueConstraint("bar_id", "source_type"),
    )

    # RAW_RECORDS
    op.create_table(
        "raw_records",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("source_system", sa.String(50), nullable=False),
        sa.Column("data_type", sa.String(50), nullable=False),
        sa.Column("bar_id", sa.Integer, sa.ForeignKey("bars.id", ondelete="CASCADE"), nullable=False),
        sa.Column("business_date", sa.Date, nullable=False),
        sa.Column("external_id", sa.String(255)),
        sa.Column("payload_hash", sa.String(64), nullable=False),
        sa.Column("dedupe_key", sa.String(255), nullable=False),
        sa.Column("payload", postgresql.JSONB, nullable=False),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("processed_at", sa.DateTime(timezone=True)),
        sa.Column("error", sa.Text),
        sa.UniqueConstraint(
            "source_system", "bar_id", "business_date", "dedupe_key", name="uq_raw_records_natural_key"
        ),
    )
    op.create_index("ix_raw_records_pending", "raw_records", ["processed", "received_at"])

    # NORMALIZED ROWS
    _normalized_table(
        "sale_visits",
        sa.Column("gross_amount", sa.Float, default=0.0),
        sa.Column("couvert_amount", sa.Float, default=0.0),
        sa.Column("tip_amount", sa.Float, default=0.0),
        sa.Column("discount_amount", sa.Float, default=0.0),
        sa.Column("discount_reason", sa.String(500)),
        sa.Column("people", sa.Float, default=0.0),
    )
    _normalized_table(
        "ticket_orders",
        sa.Column("event_id", sa.String(100)),
        sa.Column("status", sa.String(20)),
        sa.Column("gross_value", sa.Float, default=0.0),
        sa.Column("net_value", sa.Float, default=0.0),
        sa.Column("buyer_email", sa.String(255)),
    )
    _normalized_table(
        "purchases",
        sa.Column("category", sa.String(255)),
        sa.Column("kind", sa.String(20), nullable=False),
        sa.Column("amount", sa.Float, default=0.0),
        sa.Column("description", sa.Text),
    )
    _normalized_table(
        "reviews",
        sa.Column("stars", sa.Float),
        sa.Column("text", sa.Text),
        sa.Column("reviewer_name", sa.String(255)),
        sa.Column("place_id", sa.String(255)),
    )

    # DIRTY_PERIODS
    op.create_table(
        "dirty_periods",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("bar_id", sa.Integer, sa.ForeignKey("bars.id", ondelete="CASCADE"), nullable=False),
        sa.Column("period_key", sa.String(10), nullable=False),
        sa.Column("marked_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("bar_id", "period_key"),
    )

    # CMV_SUMMARIES
    op.create_table(
        "cmv_summaries",
        *_summary_identity(),
        sa.Column("gross_revenue", sa.Float, default=0.0),
        sa.Column("net_revenue", sa.Float, default=0.0),
        sa.Column("partners_discounts", sa.Float, default=0.0),
        sa.Column("benefits_discounts", sa.Float, default=0.0),
        sa.Column("admin_discounts", sa.Float, default=0.0),
        sa.Column("hr_discounts", sa.Float, default=0.0),
        sa.Column("artist_discounts", sa.Float, default=0.0),
        sa.Column("purchases_food", sa.Float, default=0.0),
        sa.Column("purchases_beverages", sa.Float, default=0.0),
        sa.Column("purchases_drinks", sa.Float, default=0.0),
        sa.Column("purchases_other", sa.Float, default=0.0),
        sa.Column("purchases_total", sa.Float, default=0.0),
        sa.Column("opening_stock", sa.Float, default=0.0),
        sa.Column("closing_stock", sa.Float, default=0.0),
        sa.Column("bonuses", sa.Float, default=0.0),
        sa.Column("other_adjustments", sa.Float, default=0.0),
        sa.Column("hr_consumption", sa.Float, default=0.0),
        sa.Column("theoretical_cmv_pct", sa.Float, default=33.0),
        sa.Column("consumption_total", sa.Float, default=0.0),
        sa.Column("cmv_value", sa.Float, default=0.0),
        sa.Column("cost_ratio", sa.Float),
        sa.Column("gross_cost_ratio", sa.Float),
        sa.Column("gap", sa.Float),
        sa.Column("computed_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("bar_id", "period_key"),
    )

    # PERFORMANCE_SUMMARIES
    op.create_table(
        "performance_summaries",
        *_summary_identity(),
        sa.Column("pos_revenue", sa.Float, default=0.0),
        sa.Column("ticket_revenue", sa.Float, default=0.0),
        sa.Column("total_revenue", sa.Float, default=0.0),
        sa.Column("customers", sa.Float, default=0.0),
        sa.Column("average_ticket", sa.Float),
        sa.Column("review_count", sa.Integer, default=0),
        sa.Column("average_stars", sa.Float),
        sa.Column("computed_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("bar_id", "period_key"),
    )

    # SUMMARY_OVERRIDES (audit)
    op.create_table(
        "summary_overrides",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("summary_kind", sa.String(20), nullable=False),
        sa.Column("bar_id", sa.Integer, sa.ForeignKey("bars.id", ondelete="CASCADE"), nullable=False),
        sa.Column("period_key", sa.String(10), nullable=False),
        sa.Column("field", sa.String(50), nullable=False),
        sa.Column("old_value", sa.Float),
        sa.Column("new_value", sa.Float),
        sa.Column("actor", sa.String(100), nullable=False),
        sa.Column("reason", sa.Text),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    # SYNC_RUNS
    op.create_table(
        "sync_runs",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("target", sa.String(100), nullable=False),
        sa.Column("bar_id", sa.Integer, sa.ForeignKey("bars.id", ondelete="SET NULL")),
        sa.Column("window_start", sa.Date, nullable=False),
        sa.Column("window_end", sa.Date, nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True)),
        sa.Column("status", sa.String(20), server_default="running"),
        sa.Column("counts_json", postgresql.JSONB),
        sa.Column("steps_json", postgresql.JSONB),
        sa.Column("error", sa.Text),
    )
    op.create_index("ix_sync_runs_target_window", "sync_runs", ["target", "bar_id", "window_start", "window_end"])

    # JOB_LEASES
    op.create_table(
        "job_leases",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("job_name", sa.String(100), unique=True, nullable=False),
        sa.Column("holder", sa.String(100), nullable=False),
        sa.Column("acquired_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("job_leases")
    op.drop_index("ix_sync_runs_target_window", table_name="sync_runs")
    op.drop_table("sync_runs")
    op.drop_table("summary_overrides")
    op.drop_table("performance_summaries")
    op.drop_table("cmv_summaries")
    op.drop_table("dirty_periods")
    for name in ("reviews", "purchases", "ticket_orders", "sale_visits"):
        op.drop_index(f"ix_{name}_bar_date", table_name=name)
        op.drop_table(name)
    op.drop_index("ix_raw_records_pending", table_name="raw_records")
    op.drop_table("raw_records")
    op.drop_table("source_configs")
    op.drop_table("bars")
