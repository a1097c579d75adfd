"""Drain unprocessed raw records into normalized tables."""

from __future__ import annotations

import time
from collections import defaultdict
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import structlog
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from barsync.aggregate.periods import period_keys_for
from barsync.aggregate.recompute import apply_manual_inputs
from barsync.config import settings
from barsync.errors import BarSyncError
from barsync.models import Base, CmvSummary, DirtyPeriod, RawRecord
from barsync.process.normalize import MalformedPayload, normalize_record
from barsync.storage.upsert import upsert_rows

logger = structlog.get_logger()

NORMALIZED_KEY = ("bar_id", "source_key")
SHEET_ACTOR = "sheets-sync"

Entry = tuple[RawRecord, type[Base], dict[str, Any]]


def _empty_stats() -> dict[str, Any]:
    return {"selected": 0, "processed": 0, "normalized": 0, "failed": 0, "dirty_periods": 0, "error": None}


def mark_dirty(session: Session, keys: set[tuple[int, str]], marked_at: datetime) -> int:
    rows = [{"bar_id": bar_id, "period_key": period_key, "marked_at": marked_at} for bar_id, period_key in keys]
    return upsert_rows(session, DirtyPeriod, rows, ("bar_id", "period_key"), update_columns=["marked_at"])


def _store_unavailable(exc: BarSyncError) -> bool:
    """True when the store itself failed rather than rejecting one row."""
    cause = exc.__cause__
    return isinstance(cause, OperationalError) or bool(getattr(cause, "connection_invalidated", False))


def _park(raw: RawRecord, error: str, now: datetime) -> None:
    raw.error = error
    raw.processed = True
    raw.processed_at = now


def _normalize(raw: RawRecord, now: datetime, stats: dict[str, Any]) -> Entry | None:
    try:
        model, row = normalize_record(raw, now)
    except MalformedPayload as exc:
        logger.warning("Malformed raw record", raw_id=raw.id, source=raw.source_system, error=str(exc))
        _park(raw, str(exc), now)
        stats["failed"] += 1
        return None
    raw.error = None
    raw.processed = True
    raw.processed_at = now
    return raw, model, row


def _write(session: Session, entries: list[Entry], now: datetime) -> tuple[int, int]:
    """Persist normalized rows and dirty tags; sheet weeks go through the audited manual-input path."""
    rows_by_model: dict[type[Base], list[dict[str, Any]]] = defaultdict(list)
    dirty: set[tuple[int, str]] = set()
    sheet_weeks = []
    for raw, model, row in entries:
        if model is CmvSummary:
            sheet_weeks.append((raw, row))
            continue
        rows_by_model[model].append(row)
        for day in {row["business_date"], raw.business_date}:
            dirty.update((raw.bar_id, key) for key in period_keys_for(day))

    normalized = 0
    for model, rows in rows_by_model.items():
        normalized += upsert_rows(session, model, rows, NORMALIZED_KEY)
    dirty_count = mark_dirty(session, dirty, now)
    for raw, row in sheet_weeks:
        apply_manual_inputs(
            session,
            row["bar_id"],
            row["period_key"],
            row["inputs"],
            actor=SHEET_ACTOR,
            reason=f"sheet column {raw.payload.get('column')}",
        )
        normalized += 1
    return normalized, dirty_count


def _process_one_by_one(session: Session, pending: list[RawRecord], now: datetime) -> dict[str, Any]:
    """Retry a rejected batch record by record, parking the records the store refuses."""
    stats = _empty_stats()
    stats["selected"] = len(pending)
    for raw in pending:
        entry = _normalize(raw, now, stats)
        if entry is not None:
            try:
                normalized, dirty_count = _write(session, [entry], now)
            except BarSyncError as exc:
                session.rollback()
                if _store_unavailable(exc):
                    logger.error("Store unavailable while processing", raw_id=raw.id, error=exc.message)
                    stats["error"] = exc.message
                    return stats
                logger.warning("Raw record rejected by store", raw_id=raw.id, source=raw.source_system, error=exc.message)
                _park(raw, exc.message, now)
                stats["failed"] += 1
            else:
                stats["normalized"] += normalized
                stats["dirty_periods"] += dirty_count
        session.commit()
        stats["processed"] += 1
    return stats


def process_batch(session: Session, max_records: int | None = None) -> dict[str, Any]:
    """Normalize up to ``max_records`` of the oldest unprocessed raw records.

    Normalized upserts, processed flags and dirty-period tags land in one
    commit. Raw records that cannot be parsed, or that the store rejects, are
    marked processed with an error so they never block the queue. When the
    store itself is unavailable the batch is rolled back and left pending.
    """
    limit = max_records or settings.process_max_records
    stats = _empty_stats()

    pending = (
        session.query(RawRecord)
        .filter(RawRecord.processed.is_(False))
        .order_by(RawRecord.received_at, RawRecord.id)
        .limit(limit)
        .with_for_update(skip_locked=True)
        .all()
    )
    stats["selected"] = len(pending)
    if not pending:
        return stats

    now = datetime.now(UTC)
    entries = [entry for entry in (_normalize(raw, now, stats) for raw in pending) if entry is not None]

    try:
        stats["normalized"], stats["dirty_periods"] = _write(session, entries, now)
        session.commit()
    except BarSyncError as exc:
        session.rollback()
        if not _store_unavailable(exc):
            logger.warning("Batch rejected by store, retrying record by record", selected=stats["selected"], error=exc.message)
            stats = _process_one_by_one(session, pending, now)
        else:
            logger.error("Processing batch failed", selected=stats["selected"], error=exc.message)
            stats["normalized"] = 0
            stats["failed"] = 0
            stats["dirty_periods"] = 0
            stats["error"] = exc.message
            return stats
    else:
        stats["processed"] = len(pending)

    logger.info(
        "Processed raw batch",
        processed=stats["processed"],
        normalized=stats["normalized"],
        failed=stats["failed"],
        dirty_periods=stats["dirty_periods"],
    )
    return stats


def process_backlog(
    session: Session,
    *,
    max_records: int | None = None,
    timeout_seconds: float | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> dict[str, Any]:
    """Run batches until the queue is empty, a batch fails, or the deadline passes."""
    timeout = settings.process_timeout_seconds if timeout_seconds is None else timeout_seconds
    deadline = clock() + timeout
    totals = _empty_stats()
    totals["batches"] = 0
    totals["timed_out"] = False

    while True:
        if clock() >= deadline:
            totals["timed_out"] = True
            logger.warning("Processing deadline reached", processed=totals["processed"])
            break
        stats = process_batch(session, max_records)
        if stats["selected"] == 0:
            break
        totals["batches"] += 1
        for key in ("selected", "processed", "normalized", "failed", "dirty_periods"):
            totals[key] += stats[key]
        if stats["error"]:
            totals["error"] = stats["error"]
            break
    return totals
