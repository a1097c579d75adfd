"""HTTP surface: dispatcher, per-source sync, processing, recompute and cron triggers."""

from __future__ import annotations

import secrets
from collections.abc import Generator
from datetime import UTC, date, datetime
from typing import Any

import structlog
from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from barsync.aggregate.recompute import recompute, recompute_all
from barsync.config import settings
from barsync.db import SessionLocal
from barsync.dispatch import dispatch
from barsync.errors import BarSyncError, InvalidInput
from barsync.ingest.runner import run_source_sync
from barsync.jobs.daily import default_window, run_daily_sync
from barsync.jobs.weekly import run_weekly_recompute
from barsync.models import SyncRun
from barsync.process.processor import process_backlog
from barsync.sources.base import SyncWindow
from barsync.sources.registry import ADAPTERS, normalize_source_type

logger = structlog.get_logger()

app = FastAPI(title="barsync")

CRON_JOBS = ("daily", "weekly")


class SyncRequest(BaseModel):
    bar_id: int
    start_date: date | None = None
    end_date: date | None = None


class ProcessRequest(BaseModel):
    max_records: int | None = None


class RecomputeRequest(BaseModel):
    bar_id: int | None = None
    period_key: str | None = None
    recalcular_todas: bool = False
    limit_periods: int | None = None


def get_session() -> Generator[Session, None, None]:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def _timestamp() -> str:
    return datetime.now(UTC).isoformat()


def _error_body(message: str, **extra: Any) -> dict[str, Any]:
    return {"success": False, "error": message, **extra, "timestamp": _timestamp()}


@app.exception_handler(BarSyncError)
async def handle_barsync_error(request: Request, exc: BarSyncError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("Request failed", path=request.url.path, error_code=exc.error_code, error=exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc.message, error_code=exc.error_code, details=exc.details),
    )


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content=_error_body(
            "Invalid request body",
            error_code=InvalidInput.error_code,
            details={"errors": jsonable_encoder(exc.errors())},
        ),
    )


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error", path=request.url.path)
    return JSONResponse(status_code=500, content=_error_body(str(exc)))


@app.post("/dispatch")
async def dispatch_route(request: Request, authorization: str | None = Header(default=None)) -> JSONResponse:
    try:
        body = await request.json()
    except ValueError as exc:
        raise InvalidInput("Request body must be JSON") from exc
    if not isinstance(body, dict):
        raise InvalidInput("Request body must be a JSON object")
    status, envelope = await run_in_threadpool(dispatch, body, authorization)
    return JSONResponse(status_code=status, content=envelope)


@app.post("/sync/{source}")
def sync_route(source: str, payload: SyncRequest, session: Session = Depends(get_session)) -> dict[str, Any]:
    source_type = normalize_source_type(source)
    if source_type not in ADAPTERS:
        raise InvalidInput(f"Unknown source: {source}. Use: {', '.join(sorted(ADAPTERS))}")
    if payload.start_date is None and payload.end_date is None:
        window = default_window()
    else:
        start = payload.start_date or payload.end_date
        end = payload.end_date or payload.start_date
        try:
            window = SyncWindow(start=start, end=end)
        except ValueError as exc:
            raise InvalidInput(str(exc)) from exc
    result = run_source_sync(session, payload.bar_id, source_type, window)
    return {**result, "timestamp": _timestamp()}


@app.post("/process")
def process_route(payload: ProcessRequest | None = None, session: Session = Depends(get_session)) -> dict[str, Any]:
    max_records = payload.max_records if payload else None
    stats = process_backlog(session, max_records=max_records)
    return {"success": stats["error"] is None, **stats, "timestamp": _timestamp()}


@app.post("/recompute")
def recompute_route(payload: RecomputeRequest, session: Session = Depends(get_session)) -> dict[str, Any]:
    if payload.recalcular_todas:
        result = recompute_all(session, payload.bar_id, payload.limit_periods)
        return {**result, "timestamp": _timestamp()}
    if payload.bar_id is None or not payload.period_key:
        raise InvalidInput("bar_id and period_key are required unless recalcular_todas is set")
    data = recompute(session, payload.bar_id, payload.period_key)
    session.commit()
    return {"success": True, "recalculadas": 1, "erros": 0, "erros_detalhes": [], "data": data, "timestamp": _timestamp()}


def _check_cron_secret(authorization: str | None) -> bool:
    expected = settings.cron_secret.get_secret_value() if settings.cron_secret else None
    if not expected or not authorization:
        return False
    return secrets.compare_digest(authorization, f"Bearer {expected}")


@app.api_route("/cron/{job}", methods=["GET", "POST"])
def cron_route(job: str, authorization: str | None = Header(default=None)) -> JSONResponse:
    if not _check_cron_secret(authorization):
        return JSONResponse(status_code=401, content=_error_body("Unauthorized"))
    if job not in CRON_JOBS:
        return JSONResponse(status_code=404, content=_error_body(f"Unknown job: {job}"))

    logger.info("Cron triggered", job=job)
    stats = run_daily_sync() if job == "daily" else run_weekly_recompute()
    content = {
        "success": bool(stats.get("success")),
        "steps": stats.get("steps", {}),
        "error": stats.get("error"),
        "timestamp": _timestamp(),
    }
    skipped = content["error"] in ("concurrent_run", "already_completed")
    return JSONResponse(status_code=200 if content["success"] or skipped else 500, content=content)


@app.get("/runs")
def runs_route(
    limit: int = Query(default=20, ge=1, le=200),
    target: str | None = None,
    session: Session = Depends(get_session),
) -> dict[str, Any]:
    query = session.query(SyncRun)
    if target:
        query = query.filter_by(target=target)
    runs = query.order_by(SyncRun.started_at.desc(), SyncRun.id.desc()).limit(limit).all()
    return {
        "success": True,
        "runs": [
            {
                "id": run.id,
                "target": run.target,
                "bar_id": run.bar_id,
                "window_start": run.window_start.isoformat(),
                "window_end": run.window_end.isoformat(),
                "started_at": run.started_at.isoformat() if run.started_at else None,
                "finished_at": run.finished_at.isoformat() if run.finished_at else None,
                "status": run.status,
                "counts": run.counts_json,
                "error": run.error,
            }
            for run in runs
        ],
    }
