"""SQLAlchemy ORM models."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import JSON, Boolean, Date, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func

JsonType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class Bar(Base):
    """Tenant venue whose data is synchronized."""

    __tablename__ = "bars"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    source_configs: Mapped[list[SourceConfig]] = relationship(back_populates="bar", cascade="all, delete-orphan")


class SourceConfig(Base):
    """Per-bar configuration for one external source."""

    __tablename__ = "source_configs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    bar_id: Mapped[int] = mapped_column(Integer, ForeignKey("bars.id", ondelete="CASCADE"), nullable=False)
    source_type: Mapped[str] = mapped_column(String(50), nullable=False)  # pos, ticketing, accounting, reviews, sheets
    config_json: Mapped[dict[str, Any]] = mapped_column(JsonType, default=dict)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    last_successful_run: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    failure_count: Mapped[int] = mapped_column(Integer, default=0)

    bar: Mapped[Bar] = relationship(back_populates="source_configs")

    __table_args__ = (UniqueConstraint("bar_id", "source_type"),)


class RawRecord(Base):
    """Landing row holding one external record as received."""

    __tablename__ = "raw_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    source_system: Mapped[str] = mapped_column(String(50), nullable=False)
    data_type: Mapped[str] = mapped_column(String(50), nullable=False)
    bar_id: Mapped[int] = mapped_column(Integer, ForeignKey("bars.id", ondelete="CASCADE"), nullable=False)
    business_date: Mapped[date] = mapped_column(Date, nullable=False)
    external_id: Mapped[str | None] = mapped_column(String(255))
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    dedupe_key: Mapped[str] = mapped_column(String(255), nullable=False)  # external_id or sha256:<hash>
    payload: Mapped[dict[str, Any]] = mapped_column(JsonType, nullable=False)
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    processed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    error: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (
        UniqueConstraint("source_system", "bar_id", "business_date", "dedupe_key", name="uq_raw_records_natural_key"),
        Index("ix_raw_records_pending", "processed", "received_at"),
    )


class SaleVisit(Base):
    """POS period row: one tab/table visit."""

    __tablename__ = "sale_visits"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    bar_id: Mapped[int] = mapped_column(Integer, ForeignKey("bars.id", ondelete="CASCADE"), nullable=False)
    source_key: Mapped[str] = mapped_column(String(255), nullable=False)
    raw_record_id: Mapped[int] = mapped_column(Integer, ForeignKey("raw_records.id"), nullable=False)
    business_date: Mapped[date] = mapped_column(Date, nullable=False)
    gross_amount: Mapped[float] = mapped_column(Float, default=0.0)
    couvert_amount: Mapped[float] = mapped_column(Float, default=0.0)
    tip_amount: Mapped[float] = mapped_column(Float, default=0.0)
    discount_amount: Mapped[float] = mapped_column(Float, default=0.0)
    discount_reason: Mapped[str | None] = mapped_column(String(500))
    people: Mapped[float] = mapped_column(Float, default=0.0)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("bar_id", "source_key"),
        Index("ix_sale_visits_bar_date", "bar_id", "business_date"),
    )


class TicketOrder(Base):
    """Ticketing platform order."""

    __tablename__ = "ticket_orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    bar_id: Mapped[int] = mapped_column(Integer, ForeignKey("bars.id", ondelete="CASCADE"), nullable=False)
    source_key: Mapped[str] = mapped_column(String(255), nullable=False)
    raw_record_id: Mapped[int] = mapped_column(Integer, ForeignKey("raw_records.id"), nullable=False)
    business_date: Mapped[date] = mapped_column(Date, nullable=False)
    event_id: Mapped[str | None] = mapped_column(String(100))
    status: Mapped[str | None] = mapped_column(String(20))
    gross_value: Mapped[float] = mapped_column(Float, default=0.0)
    net_value: Mapped[float] = mapped_column(Float, default=0.0)
    buyer_email: Mapped[str | None] = mapped_column(String(255))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("bar_id", "source_key"),
        Index("ix_ticket_orders_bar_date", "bar_id", "business_date"),
    )


class Purchase(Base):
    """Accounting schedule entry (payable/receivable)."""

    __tablename__ = "purchases"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    bar_id: Mapped[int] = mapped_column(Integer, ForeignKey("bars.id", ondelete="CASCADE"), nullable=False)
    source_key: Mapped[str] = mapped_column(String(255), nullable=False)
    raw_record_id: Mapped[int] = mapped_column(Integer, ForeignKey("raw_records.id"), nullable=False)
    business_date: Mapped[date] = mapped_column(Date, nullable=False)  # competence date
    category: Mapped[str | None] = mapped_column(String(255))
    kind: Mapped[str] = mapped_column(String(20), nullable=False)  # Debit/Credit
    amount: Mapped[float] = mapped_column(Float, default=0.0)
    description: Mapped[str | None] = mapped_column(Text)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("bar_id", "source_key"),
        Index("ix_purchases_bar_date", "bar_id", "business_date"),
    )


class Review(Base):
    """Customer review scraped from the review aggregator."""

    __tablename__ = "reviews"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    bar_id: Mapped[int] = mapped_column(Integer, ForeignKey("bars.id", ondelete="CASCADE"), nullable=False)
    source_key: Mapped[str] = mapped_column(String(255), nullable=False)
    raw_record_id: Mapped[int] = mapped_column(Integer, ForeignKey("raw_records.id"), nullable=False)
    business_date: Mapped[date] = mapped_column(Date, nullable=False)
    stars: Mapped[float | None] = mapped_column(Float)
    text: Mapped[str | None] = mapped_column(Text)
    reviewer_name: Mapped[str | None] = mapped_column(String(255))
    place_id: Mapped[str | None] = mapped_column(String(255))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("bar_id", "source_key"),
        Index("ix_reviews_bar_date", "bar_id", "business_date"),
    )


class DirtyPeriod(Base):
    """Periods whose inputs changed since their last recomputation."""

    __tablename__ = "dirty_periods"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    bar_id: Mapped[int] = mapped_column(Integer, ForeignKey("bars.id", ondelete="CASCADE"), nullable=False)
    period_key: Mapped[str] = mapped_column(String(10), nullable=False)
    marked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (UniqueConstraint("bar_id", "period_key"),)


class CmvSummary(Base):
    """Cost of goods (CMV) per bar and period. Recomputed, never hand-edited."""

    __tablename__ = "cmv_summaries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    bar_id: Mapped[int] = mapped_column(Integer, ForeignKey("bars.id", ondelete="CASCADE"), nullable=False)
    period_key: Mapped[str] = mapped_column(String(10), nullable=False)
    granularity: Mapped[str] = mapped_column(String(10), nullable=False)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)

    gross_revenue: Mapped[float] = mapped_column(Float, default=0.0)
    net_revenue: Mapped[float] = mapped_column(Float, default=0.0)

    partners_discounts: Mapped[float] = mapped_column(Float, default=0.0)
    benefits_discounts: Mapped[float] = mapped_column(Float, default=0.0)
    admin_discounts: Mapped[float] = mapped_column(Float, default=0.0)
    hr_discounts: Mapped[float] = mapped_column(Float, default=0.0)
    artist_discounts: Mapped[float] = mapped_column(Float, default=0.0)

    purchases_food: Mapped[float] = mapped_column(Float, default=0.0)
    purchases_beverages: Mapped[float] = mapped_column(Float, default=0.0)
    purchases_drinks: Mapped[float] = mapped_column(Float, default=0.0)
    purchases_other: Mapped[float] = mapped_column(Float, default=0.0)
    purchases_total: Mapped[float] = mapped_column(Float, default=0.0)

    # Manual inputs, changed only through the override path
    opening_stock: Mapped[float] = mapped_column(Float, default=0.0)
    closing_stock: Mapped[float] = mapped_column(Float, default=0.0)
    bonuses: Mapped[float] = mapped_column(Float, default=0.0)
    other_adjustments: Mapped[float] = mapped_column(Float, default=0.0)
    hr_consumption: Mapped[float] = mapped_column(Float, default=0.0)
    theoretical_cmv_pct: Mapped[float] = mapped_column(Float, default=33.0)

    consumption_total: Mapped[float] = mapped_column(Float, default=0.0)
    cmv_value: Mapped[float] = mapped_column(Float, default=0.0)
    cost_ratio: Mapped[float | None] = mapped_column(Float)
    gross_cost_ratio: Mapped[float | None] = mapped_column(Float)
    gap: Mapped[float | None] = mapped_column(Float)

    computed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (UniqueConstraint("bar_id", "period_key"),)


class PerformanceSummary(Base):
    """Weekly/monthly scorecard per bar."""

    __tablename__ = "performance_summaries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    bar_id: Mapped[int] = mapped_column(Integer, ForeignKey("bars.id", ondelete="CASCADE"), nullable=False)
    period_key: Mapped[str] = mapped_column(String(10), nullable=False)
    granularity: Mapped[str] = mapped_column(String(10), nullable=False)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)

    pos_revenue: Mapped[float] = mapped_column(Float, default=0.0)
    ticket_revenue: Mapped[float] = mapped_column(Float, default=0.0)
    total_revenue: Mapped[float] = mapped_column(Float, default=0.0)
    customers: Mapped[float] = mapped_column(Float, default=0.0)
    average_ticket: Mapped[float | None] = mapped_column(Float)
    review_count: Mapped[int] = mapped_column(Integer, default=0)
    average_stars: Mapped[float | None] = mapped_column(Float)

    computed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (UniqueConstraint("bar_id", "period_key"),)


class SummaryOverride(Base):
    """Audit trail for manual edits of summary inputs."""

    __tablename__ = "summary_overrides"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    summary_kind: Mapped[str] = mapped_column(String(20), nullable=False)
    bar_id: Mapped[int] = mapped_column(Integer, ForeignKey("bars.id", ondelete="CASCADE"), nullable=False)
    period_key: Mapped[str] = mapped_column(String(10), nullable=False)
    field: Mapped[str] = mapped_column(String(50), nullable=False)
    old_value: Mapped[float | None] = mapped_column(Float)
    new_value: Mapped[float | None] = mapped_column(Float)
    actor: Mapped[str] = mapped_column(String(100), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class SyncRun(Base):
    """Run tracking for ingests and scheduled jobs."""

    __tablename__ = "sync_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    target: Mapped[str] = mapped_column(String(100), nullable=False)  # source name or cron:<job>
    bar_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("bars.id", ondelete="SET NULL"))
    window_start: Mapped[date] = mapped_column(Date, nullable=False)
    window_end: Mapped[date] = mapped_column(Date, nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    status: Mapped[str] = mapped_column(String(20), default="running")  # running/success/partial/failed/skipped
    counts_json: Mapped[dict[str, Any]] = mapped_column(JsonType, default=dict)
    steps_json: Mapped[dict[str, Any]] = mapped_column(JsonType, default=dict)
    error: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (Index("ix_sync_runs_target_window", "target", "bar_id", "window_start", "window_end"),)


class JobLease(Base):
    """Time-boxed lease preventing overlapping job invocations."""

    __tablename__ = "job_leases"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    job_name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    holder: Mapped[str] = mapped_column(String(100), nullable=False)
    acquired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
