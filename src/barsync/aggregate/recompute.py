"""Rebuild period summaries from normalized rows."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, date, datetime
from typing import Any

import structlog
from sqlalchemy.orm import Session

from barsync.aggregate.cmv import MANUAL_FIELDS, ManualInputs, bucket_discounts, bucket_purchases, compute_cmv
from barsync.aggregate.performance import compute_performance
from barsync.aggregate.periods import Period, business_today, parse_period_key, trailing_weeks
from barsync.config import settings
from barsync.errors import BarSyncError, InvalidInput
from barsync.models import (
    Bar,
    CmvSummary,
    DirtyPeriod,
    PerformanceSummary,
    Purchase,
    Review,
    SaleVisit,
    SummaryOverride,
    TicketOrder,
)
from barsync.storage.upsert import upsert_rows

logger = structlog.get_logger()

SUMMARY_KEY = ("bar_id", "period_key")


def _in_period(model, bar_id: int, period: Period):
    return (
        model.bar_id == bar_id,
        model.business_date >= period.start,
        model.business_date <= period.end,
    )


def _manual_inputs(session: Session, bar_id: int, period_key: str) -> ManualInputs:
    existing = session.query(CmvSummary).filter_by(bar_id=bar_id, period_key=period_key).first()
    if existing is None:
        return ManualInputs(theoretical_cmv_pct=settings.cmv_default_theoretical_pct)
    return ManualInputs(**{field: getattr(existing, field) or 0.0 for field in MANUAL_FIELDS})


def recompute(
    session: Session,
    bar_id: int,
    period_key: str,
    *,
    partner_names: Sequence[str] | None = None,
) -> dict[str, Any]:
    """Recompute both summaries for one bar and period.

    Reads only normalized rows and the stored manual inputs, so running it twice
    yields the same values. Clears the period's dirty marker. Does not commit.
    """
    session.flush()
    period = parse_period_key(period_key)
    if partner_names is None:
        partner_names = settings.cmv_partner_names

    visits = (
        session.query(
            SaleVisit.gross_amount,
            SaleVisit.couvert_amount,
            SaleVisit.tip_amount,
            SaleVisit.discount_amount,
            SaleVisit.discount_reason,
            SaleVisit.people,
        )
        .filter(*_in_period(SaleVisit, bar_id, period))
        .all()
    )
    purchases = (
        session.query(Purchase.category, Purchase.kind, Purchase.amount)
        .filter(*_in_period(Purchase, bar_id, period))
        .all()
    )
    orders = session.query(TicketOrder.status, TicketOrder.net_value).filter(*_in_period(TicketOrder, bar_id, period)).all()
    stars = [row.stars for row in session.query(Review.stars).filter(*_in_period(Review, bar_id, period)).all()]

    manual = _manual_inputs(session, bar_id, period_key)
    cmv = compute_cmv(
        gross_revenue=sum(v.gross_amount or 0.0 for v in visits),
        couvert=sum(v.couvert_amount or 0.0 for v in visits),
        tips=sum(v.tip_amount or 0.0 for v in visits),
        discounts=bucket_discounts(((v.discount_reason, v.discount_amount or 0.0) for v in visits), partner_names),
        purchases=bucket_purchases((p.category, p.kind, p.amount or 0.0) for p in purchases),
        manual=manual,
    )
    performance = compute_performance(
        visits=[(v.gross_amount or 0.0, v.couvert_amount or 0.0, v.tip_amount or 0.0, v.people or 0.0) for v in visits],
        orders=[(o.status, o.net_value or 0.0) for o in orders],
        stars=stars,
    )

    now = datetime.now(UTC)
    identity = {
        "bar_id": bar_id,
        "period_key": period.key,
        "granularity": period.granularity,
        "period_start": period.start,
        "period_end": period.end,
        "computed_at": now,
    }
    upsert_rows(session, CmvSummary, [{**identity, **vars(manual), **cmv}], SUMMARY_KEY)
    upsert_rows(session, PerformanceSummary, [{**identity, **performance}], SUMMARY_KEY)
    session.query(DirtyPeriod).filter_by(bar_id=bar_id, period_key=period.key).delete(synchronize_session=False)
    session.expire_all()

    logger.info(
        "Period recomputed",
        bar_id=bar_id,
        period=period.key,
        cmv_value=round(cmv["cmv_value"] or 0.0, 2),
        cost_ratio=cmv["cost_ratio"],
        total_revenue=round(performance["total_revenue"] or 0.0, 2),
    )
    return {"bar_id": bar_id, "period_key": period.key, "cmv": cmv, "performance": performance}


def _recompute_each(session: Session, targets: list[tuple[int, str]]) -> dict[str, Any]:
    result: dict[str, Any] = {"recalculadas": 0, "erros": 0, "erros_detalhes": []}
    for bar_id, period_key in targets:
        try:
            recompute(session, bar_id, period_key)
            session.commit()
            result["recalculadas"] += 1
        except BarSyncError as exc:
            session.rollback()
            logger.error("Recompute failed", bar_id=bar_id, period=period_key, error=exc.message)
            result["erros_detalhes"].append({"bar_id": bar_id, "period_key": period_key, "error": exc.message})
    result["erros"] = len(result["erros_detalhes"])
    result["success"] = not result["erros"]
    return result


def recompute_all(
    session: Session,
    bar_id: int | None = None,
    limit_periods: int | None = None,
    *,
    today: date | None = None,
) -> dict[str, Any]:
    """Recompute the trailing weekly periods whether or not their inputs changed."""
    count = limit_periods or settings.recompute_trailing_periods
    if count <= 0:
        raise InvalidInput("limit_periods must be positive")
    weeks = trailing_weeks(today or business_today(), count)
    if bar_id is not None:
        bar_ids = [bar_id]
    else:
        bar_ids = [bar.id for bar in session.query(Bar).filter_by(active=True).order_by(Bar.id).all()]
    return _recompute_each(session, [(bid, week.key) for bid in bar_ids for week in weeks])


def recompute_dirty(session: Session, bar_ids: Sequence[int] | None = None) -> dict[str, Any]:
    """Recompute only periods tagged dirty by the processor."""
    query = session.query(DirtyPeriod.bar_id, DirtyPeriod.period_key).order_by(DirtyPeriod.bar_id, DirtyPeriod.period_key)
    if bar_ids is not None:
        if not bar_ids:
            return {"recalculadas": 0, "erros": 0, "erros_detalhes": [], "success": True}
        query = query.filter(DirtyPeriod.bar_id.in_(list(bar_ids)))
    return _recompute_each(session, [(row.bar_id, row.period_key) for row in query.all()])


def _summary_for(session: Session, bar_id: int, period_key: str) -> CmvSummary:
    summary = session.query(CmvSummary).filter_by(bar_id=bar_id, period_key=period_key).first()
    if summary is None:
        recompute(session, bar_id, period_key)
        summary = session.query(CmvSummary).filter_by(bar_id=bar_id, period_key=period_key).one()
    return summary


def apply_manual_inputs(
    session: Session,
    bar_id: int,
    period_key: str,
    values: dict[str, float],
    *,
    actor: str,
    reason: str | None = None,
    skip_unchanged: bool = True,
) -> dict[str, Any] | None:
    """Write manual CMV inputs with one audit row per field, then recompute the period once.

    With ``skip_unchanged`` fields already holding the value are left alone and
    ``None`` is returned when nothing changed.
    """
    unknown = sorted(set(values) - set(MANUAL_FIELDS))
    if unknown:
        raise InvalidInput(f"Field {unknown[0]!r} is not editable. Use: {', '.join(MANUAL_FIELDS)}")
    period = parse_period_key(period_key)
    summary = _summary_for(session, bar_id, period.key)

    now = datetime.now(UTC)
    changed = []
    for field, value in values.items():
        old_value = getattr(summary, field)
        if skip_unchanged and old_value == value:
            continue
        session.add(
            SummaryOverride(
                summary_kind="cmv",
                bar_id=bar_id,
                period_key=period.key,
                field=field,
                old_value=old_value,
                new_value=value,
                actor=actor,
                reason=reason,
                created_at=now,
            )
        )
        setattr(summary, field, value)
        changed.append(field)

    if skip_unchanged and not changed:
        return None
    session.flush()
    logger.info("Manual inputs updated", bar_id=bar_id, period=period.key, fields=changed, actor=actor)
    return recompute(session, bar_id, period.key)


def override_summary_field(
    session: Session,
    bar_id: int,
    period_key: str,
    field: str,
    value: float,
    *,
    actor: str,
    reason: str | None = None,
) -> dict[str, Any]:
    """Change a manual CMV input, record the audit row, and recompute the period."""
    return apply_manual_inputs(
        session, bar_id, period_key, {field: value}, actor=actor, reason=reason, skip_unchanged=False
    )
