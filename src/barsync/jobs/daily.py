"""Daily sync pipeline: ingest, process, aggregate, notify."""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
import structlog
from sqlalchemy.orm import Session

from barsync.aggregate.periods import business_today
from barsync.aggregate.recompute import recompute_dirty
from barsync.config import settings
from barsync.db import get_db
from barsync.errors import BarSyncError
from barsync.ingest.runner import run_source_sync
from barsync.jobs.lease import acquire_lease, default_holder, release_lease
from barsync.models import Bar, SourceConfig, SyncRun
from barsync.outbound.discord import format_daily_summary, send_discord_message
from barsync.process.processor import process_backlog
from barsync.sources.base import SyncWindow

logger = structlog.get_logger()

JOB_NAME = "barsync_daily"
RUN_TARGET = "cron:daily"
STEPS = ("ingest", "process", "aggregate", "notify")


def default_window(today=None) -> SyncWindow:
    """The ``sync_default_lookback_days`` days before today, in business time."""
    today = today or business_today()
    end = today - timedelta(days=1)
    return SyncWindow(start=end - timedelta(days=settings.sync_default_lookback_days - 1), end=end)


class DailyContext:
    def __init__(self, window: SyncWindow, client: httpx.Client | None, sleep_fn: Callable[[float], None]):
        self.window = window
        self.client = client
        self.sleep_fn = sleep_fn
        self.failed_bars: set[int] = set()
        self.stats: dict[str, Any] = {}


def ingest_step(session: Session, ctx: DailyContext) -> dict[str, Any]:
    configs = (
        session.query(SourceConfig)
        .join(Bar)
        .filter(Bar.active.is_(True), SourceConfig.active.is_(True))
        .order_by(SourceConfig.bar_id, SourceConfig.source_type)
        .all()
    )
    targets = [(config.bar_id, config.source_type) for config in configs]
    sources = []
    for bar_id, source_type in targets:
        try:
            result = run_source_sync(
                session, bar_id, source_type, ctx.window, client=ctx.client, sleep_fn=ctx.sleep_fn
            )
        except BarSyncError as exc:
            session.rollback()
            logger.error("Source sync failed", bar_id=bar_id, source=source_type, error=exc.message)
            result = {"success": False, "source": source_type, "bar_id": bar_id, "error": exc.message}
        if not result.get("success"):
            ctx.failed_bars.add(bar_id)
        sources.append(result)
    return {"sources": sources, "failed_bars": sorted(ctx.failed_bars)}


def process_step(session: Session, ctx: DailyContext) -> dict[str, Any]:
    return process_backlog(session)


def aggregate_step(session: Session, ctx: DailyContext) -> dict[str, Any]:
    bar_ids = [bar.id for bar in session.query(Bar).filter_by(active=True).order_by(Bar.id).all()]
    eligible = [bar_id for bar_id in bar_ids if bar_id not in ctx.failed_bars]
    skipped = [bar_id for bar_id in bar_ids if bar_id in ctx.failed_bars]
    if skipped:
        logger.warning("Skipping aggregation for bars with ingest failures", bar_ids=skipped)
    result = recompute_dirty(session, eligible)
    result["skipped_bars"] = skipped
    return result


def notify_step(session: Session, ctx: DailyContext) -> dict[str, Any]:
    return send_discord_message(format_daily_summary(ctx.stats))


STEP_FUNCTIONS: dict[str, Callable[[Session, DailyContext], dict[str, Any]]] = {
    "ingest": ingest_step,
    "process": process_step,
    "aggregate": aggregate_step,
    "notify": notify_step,
}


def _step_status(name: str, result: dict[str, Any]) -> str:
    if name == "ingest":
        return "success" if not result.get("failed_bars") else "partial"
    if name in ("process", "aggregate"):
        return "success" if not result.get("error") and not result.get("erros", 0) else "partial"
    return "success"


def _resume_point(steps: dict[str, Any]) -> int:
    for index, name in enumerate(STEPS):
        if (steps.get(name) or {}).get("status") != "success":
            return index
    return len(STEPS)


def run_daily_sync(
    window: SyncWindow | None = None,
    *,
    client: httpx.Client | None = None,
    sleep_fn: Callable[[float], None] = time.sleep,
    force: bool = False,
) -> dict[str, Any]:
    """Run the daily pipeline for a window, resuming an unfinished run for the same window.

    Returns:
        dict with per-step status/results, ``success`` and ``error`` when skipped or failed
    """
    window = window or default_window()
    ctx = DailyContext(window, client, sleep_fn)
    stats: dict[str, Any] = {
        "window_start": window.start.isoformat(),
        "window_end": window.end.isoformat(),
        "steps": {},
        "success": False,
    }
    ctx.stats = stats
    holder = default_holder()

    with get_db() as session:
        if not acquire_lease(session, JOB_NAME, holder):
            logger.info("Another daily run in progress, exiting")
            stats["error"] = "concurrent_run"
            return stats

        run: SyncRun | None = None
        try:
            existing = (
                session.query(SyncRun)
                .filter_by(target=RUN_TARGET, bar_id=None, window_start=window.start, window_end=window.end)
                .order_by(SyncRun.id.desc())
                .first()
            )
            if existing is not None and existing.status == "success" and not force:
                logger.info("Daily sync already completed for window", window_start=str(window.start))
                stats["steps"] = dict(existing.steps_json or {})
                stats["error"] = "already_completed"
                return stats

            if existing is not None and not force:
                run = existing
                steps = dict(run.steps_json or {})
            else:
                run = SyncRun(target=RUN_TARGET, window_start=window.start, window_end=window.end, counts_json={})
                steps = {}
            run.status = "running"
            run.started_at = datetime.now(UTC)
            run.finished_at = None
            run.error = None
            session.add(run)
            session.commit()

            start = _resume_point(steps)
            if start:
                logger.info("Resuming daily sync", from_step=STEPS[start] if start < len(STEPS) else None)
            ingest_result = (steps.get("ingest") or {}).get("result") or {}
            ctx.failed_bars.update(ingest_result.get("failed_bars", []))
            stats["steps"] = steps

            for name in STEPS[start:]:
                logger.info("Daily step started", step=name)
                try:
                    result = STEP_FUNCTIONS[name](session, ctx)
                except Exception as exc:
                    session.rollback()
                    logger.exception("Daily step failed", step=name)
                    steps[name] = {"status": "failed", "error": str(exc)}
                    run.steps_json = dict(steps)
                    session.commit()
                    raise
                steps[name] = {"status": _step_status(name, result), "result": result}
                run.steps_json = dict(steps)
                session.commit()
                logger.info("Daily step finished", step=name, status=steps[name]["status"])

            all_ok = all(steps[name]["status"] == "success" for name in STEPS)
            run.status = "success" if all_ok else "partial"
            run.counts_json = _run_counts(steps)
            run.finished_at = datetime.now(UTC)
            stats["success"] = True

        except Exception as exc:
            logger.exception("Daily sync failed")
            stats["error"] = str(exc)
            if run is not None:
                run.status = "failed"
                run.error = str(exc)
                run.finished_at = datetime.now(UTC)
            send_discord_message(format_daily_summary(stats))

        finally:
            session.commit()
            release_lease(session, JOB_NAME, holder)

    return stats


def _run_counts(steps: dict[str, Any]) -> dict[str, int]:
    sources = ((steps.get("ingest") or {}).get("result") or {}).get("sources", [])
    return {
        "collected": sum(source.get("collected", 0) for source in sources),
        "inserted": sum(source.get("inserted", 0) for source in sources),
        "errors": sum(1 for source in sources if not source.get("success")),
    }
