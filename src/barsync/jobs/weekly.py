"""Weekly recomputation of trailing periods for every bar."""

from __future__ import annotations

from datetime import UTC, date, datetime
from typing import Any

import structlog

from barsync.aggregate.periods import business_today, trailing_weeks
from barsync.aggregate.recompute import recompute_all
from barsync.config import settings
from barsync.db import get_db
from barsync.errors import InvalidInput
from barsync.jobs.lease import acquire_lease, default_holder, release_lease
from barsync.models import SyncRun

logger = structlog.get_logger()

JOB_NAME = "barsync_weekly"
RUN_TARGET = "cron:weekly"


def run_weekly_recompute(limit_periods: int | None = None, today: date | None = None) -> dict[str, Any]:
    """Recompute the trailing weekly periods regardless of whether inputs changed."""
    today = today or business_today()
    count = limit_periods or settings.recompute_trailing_periods
    if count <= 0:
        raise InvalidInput("limit_periods must be positive")
    weeks = trailing_weeks(today, count)
    stats: dict[str, Any] = {
        "date": today.isoformat(),
        "periods": [week.key for week in weeks],
        "steps": {},
        "success": False,
    }
    holder = default_holder()

    with get_db() as session:
        if not acquire_lease(session, JOB_NAME, holder):
            logger.info("Another weekly run in progress, exiting")
            stats["error"] = "concurrent_run"
            return stats

        run = SyncRun(
            target=RUN_TARGET,
            window_start=weeks[-1].start,
            window_end=weeks[0].end,
            started_at=datetime.now(UTC),
            status="running",
            counts_json={},
            steps_json={},
        )
        session.add(run)
        session.commit()

        try:
            result = recompute_all(session, limit_periods=count, today=today)
            stats["steps"]["recompute"] = {"status": "success" if result["success"] else "partial", "result": result}
            run.steps_json = dict(stats["steps"])
            run.counts_json = {"collected": 0, "inserted": result["recalculadas"], "errors": result["erros"]}
            run.status = "success" if result["success"] else "partial"
            stats["success"] = True
        except Exception as exc:
            session.rollback()
            logger.exception("Weekly recompute failed")
            stats["error"] = str(exc)
            run.status = "failed"
            run.error = str(exc)
        finally:
            run.finished_at = datetime.now(UTC)
            session.commit()
            release_lease(session, JOB_NAME, holder)

    logger.info("Weekly recompute finished", periods=len(stats["periods"]), success=stats["success"])
    return stats
