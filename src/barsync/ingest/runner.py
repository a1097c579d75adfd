"""Per-source sync entry point: config lookup, run tracking, ingestion."""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
import structlog
from sqlalchemy.orm import Session

from barsync.config import settings
from barsync.errors import InvalidInput
from barsync.ingest.driver import ingest_source
from barsync.models import Bar, SourceConfig, SyncRun
from barsync.sources.base import AdapterContext, SyncWindow
from barsync.sources.registry import build_adapter, normalize_source_type

logger = structlog.get_logger()


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo else value.replace(tzinfo=UTC)


def find_running_sync(session: Session, target: str, bar_id: int | None, window: SyncWindow) -> SyncRun | None:
    """A still-fresh ``running`` SyncRun for the same target, bar and window."""
    cutoff = datetime.now(UTC) - timedelta(seconds=settings.lease_ttl_seconds)
    candidates = (
        session.query(SyncRun)
        .filter_by(target=target, bar_id=bar_id, window_start=window.start, window_end=window.end, status="running")
        .all()
    )
    for run in candidates:
        if _as_utc(run.started_at) >= cutoff:
            return run
    return None


def run_source_sync(
    session: Session,
    bar_id: int,
    source_type: str,
    window: SyncWindow,
    *,
    client: httpx.Client | None = None,
    sleep_fn: Callable[[float], None] = time.sleep,
) -> dict[str, Any]:
    """Ingest one source for one bar over a window.

    Returns a summary dict with ``success`` plus the ingest counts.
    """
    source_type = normalize_source_type(source_type)
    bar = session.get(Bar, bar_id)
    if bar is None:
        raise InvalidInput(f"Unknown bar: {bar_id}")
    source_config = session.query(SourceConfig).filter_by(bar_id=bar_id, source_type=source_type).first()
    if source_config is not None and not source_config.active:
        logger.info("Source disabled, skipping", bar_id=bar_id, source=source_type)
        return {"success": True, "skipped": "inactive", "source": source_type, "bar_id": bar_id}

    if find_running_sync(session, source_type, bar_id, window):
        logger.info("Sync already running, skipping", bar_id=bar_id, source=source_type)
        return {"success": False, "skipped": "already_running", "source": source_type, "bar_id": bar_id}

    context = AdapterContext(
        bar_id=bar_id,
        window=window,
        config=dict(source_config.config_json or {}) if source_config else {},
    )
    adapter = build_adapter(source_type, context, client)

    run = SyncRun(
        target=source_type,
        bar_id=bar_id,
        window_start=window.start,
        window_end=window.end,
        started_at=datetime.now(UTC),
        status="running",
        counts_json={},
        steps_json={},
    )
    session.add(run)
    session.commit()

    logger.info("Sync started", bar_id=bar_id, source=source_type, start=str(window.start), end=str(window.end))
    try:
        result = ingest_source(session, adapter, bar_id, sleep_fn=sleep_fn)
    except Exception as exc:
        session.rollback()
        logger.exception("Sync crashed", bar_id=bar_id, source=source_type)
        run.status = "failed"
        run.error = str(exc)
        run.finished_at = datetime.now(UTC)
        if source_config is not None:
            source_config.failure_count = (source_config.failure_count or 0) + 1
        session.commit()
        raise

    counts = {"collected": result.collected, "inserted": result.new + result.updated, "errors": 0 if result.ok else 1}
    run.counts_json = {**counts, "pages": result.pages, "unchanged": result.unchanged}
    run.finished_at = datetime.now(UTC)
    if result.ok:
        run.status = "success"
    else:
        run.status = "partial" if result.pages else "failed"
        run.error = result.error

    if source_config is not None:
        if result.ok:
            source_config.last_successful_run = run.finished_at
            source_config.failure_count = 0
        else:
            source_config.failure_count = (source_config.failure_count or 0) + 1
    session.commit()

    logger.info("Sync finished", bar_id=bar_id, source=source_type, status=run.status, **counts)
    return {"success": result.ok, "run_id": run.id, "status": run.status, **result.as_dict()}
