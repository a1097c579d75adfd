"""Tests for leases, notifications and the scheduled jobs."""

from datetime import UTC, date, datetime, timedelta
from unittest.mock import patch

import httpx
import pytest

from barsync.errors import InvalidInput
from barsync.jobs.daily import run_daily_sync
from barsync.jobs.lease import acquire_lease, release_lease
from barsync.jobs.weekly import run_weekly_recompute
from barsync.models import CmvSummary, DirtyPeriod, JobLease, PerformanceSummary, Review, SyncRun
from barsync.outbound.discord import format_daily_summary, send_discord_message
from barsync.sources.base import SyncWindow

DAY = date(2026, 3, 2)
WINDOW = SyncWindow(start=DAY, end=DAY)
REVIEW_ROWS = [
    {"reviewId": "r1", "publishedAtDate": "2026-03-02T12:00:00.000Z", "stars": 5},
    {"reviewId": "r2", "publishedAtDate": "2026-03-02T13:00:00.000Z", "stars": 3},
]


class TestLease:
    def test_exclusive_until_released(self, db_session):
        assert acquire_lease(db_session, "daily", holder="a")
        assert not acquire_lease(db_session, "daily", holder="b")
        release_lease(db_session, "daily", holder="a")
        assert acquire_lease(db_session, "daily", holder="b")

    def test_expired_lease_is_taken_over(self, db_session):
        past = datetime.now(UTC) - timedelta(hours=2)
        assert acquire_lease(db_session, "daily", holder="a", ttl_seconds=60, now=past)
        assert acquire_lease(db_session, "daily", holder="b")
        assert db_session.query(JobLease).one().holder == "b"


class TestDiscord:
    def test_posts_content(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(204)

        result = send_discord_message("hello", webhook_url="https://discord.test/hook", transport=httpx.MockTransport(handler))
        assert result["ok"] is True
        assert seen[0].url == "https://discord.test/hook"

    def test_failures_are_swallowed(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("down", request=request)

        result = send_discord_message("hello", webhook_url="https://discord.test/hook", transport=httpx.MockTransport(handler))
        assert result["ok"] is False

    def test_missing_config(self, monkeypatch):
        from barsync.outbound import discord

        monkeypatch.setattr(discord.settings, "discord_webhook_url", None)
        assert send_discord_message("hello")["error"] == "discord_config_missing"

    def test_summary_lists_failed_sources(self):
        text = format_daily_summary(
            {
                "window_start": "2026-03-02",
                "window_end": "2026-03-02",
                "success": True,
                "steps": {
                    "ingest": {
                        "status": "partial",
                        "result": {"sources": [{"success": False, "bar_id": 3, "source": "pos", "error": "HTTP 500"}]},
                    }
                },
            }
        )
        assert "ingest: partial" in text
        assert "bar 3 pos: HTTP 500" in text


def _reviews_client(json_transport, status: int = 200) -> httpx.Client:
    def handler(request: httpx.Request):
        if status != 200:
            return httpx.Response(status)
        return REVIEW_ROWS

    return httpx.Client(transport=json_transport(handler))


class TestDailySync:
    def _run(self, patch_get_db, **kwargs):
        with patch("barsync.jobs.daily.get_db", patch_get_db), patch(
            "barsync.jobs.daily.send_discord_message", return_value={"ok": True, "error": None}
        ):
            return run_daily_sync(WINDOW, sleep_fn=lambda seconds: None, **kwargs)

    def test_full_pipeline(self, db_session, sample_bar, make_source_config, json_transport, patch_get_db):
        make_source_config(sample_bar, "reviews", token="t", dataset_id="ds")

        stats = self._run(patch_get_db, client=_reviews_client(json_transport))

        assert stats["success"] is True
        assert [stats["steps"][name]["status"] for name in ("ingest", "process", "aggregate", "notify")] == [
            "success"
        ] * 4
        assert db_session.query(Review).count() == 2
        perf = db_session.query(PerformanceSummary).filter_by(period_key="2026-W10").one()
        assert perf.review_count == 2
        assert perf.average_stars == 4.0
        assert db_session.query(CmvSummary).filter_by(period_key="2026-03").count() == 1
        assert db_session.query(DirtyPeriod).count() == 0

        run = db_session.query(SyncRun).filter_by(target="cron:daily").one()
        assert run.status == "success"
        assert run.counts_json == {"collected": 2, "inserted": 2, "errors": 0}
        assert db_session.query(JobLease).count() == 0

    def test_concurrent_run_is_skipped(self, db_session, patch_get_db):
        db_session.add(
            JobLease(
                job_name="barsync_daily",
                holder="someone-else",
                acquired_at=datetime.now(UTC),
                expires_at=datetime.now(UTC) + timedelta(minutes=30),
            )
        )
        db_session.commit()

        stats = self._run(patch_get_db)

        assert stats["error"] == "concurrent_run"
        assert db_session.query(SyncRun).count() == 0

    def test_failed_bar_is_not_aggregated(self, db_session, sample_bar, make_source_config, json_transport, patch_get_db):
        make_source_config(sample_bar, "reviews", token="t", dataset_id="ds")
        db_session.add(DirtyPeriod(bar_id=sample_bar.id, period_key="2026-W10", marked_at=datetime.now(UTC)))
        db_session.commit()

        stats = self._run(patch_get_db, client=_reviews_client(json_transport, status=500))

        assert stats["steps"]["ingest"]["status"] == "partial"
        assert stats["steps"]["aggregate"]["result"]["skipped_bars"] == [sample_bar.id]
        assert db_session.query(DirtyPeriod).count() == 1
        assert db_session.query(SyncRun).filter_by(target="cron:daily").one().status == "partial"

    def test_resumes_from_first_unfinished_step(self, db_session, sample_bar, patch_get_db):
        db_session.add(
            SyncRun(
                target="cron:daily",
                window_start=DAY,
                window_end=DAY,
                started_at=datetime.now(UTC) - timedelta(hours=1),
                status="failed",
                steps_json={
                    "ingest": {"status": "success", "result": {"sources": [], "failed_bars": []}},
                    "process": {"status": "failed", "error": "timeout"},
                },
            )
        )
        db_session.commit()

        with patch("barsync.jobs.daily.run_source_sync") as mock_sync:
            stats = self._run(patch_get_db)

        mock_sync.assert_not_called()
        assert stats["success"] is True
        run = db_session.query(SyncRun).filter_by(target="cron:daily").one()
        assert run.status == "success"
        assert run.steps_json["process"]["status"] == "success"

    def test_completed_window_is_not_rerun(self, db_session, patch_get_db):
        steps = {name: {"status": "success"} for name in ("ingest", "process", "aggregate", "notify")}
        db_session.add(
            SyncRun(
                target="cron:daily",
                window_start=DAY,
                window_end=DAY,
                started_at=datetime.now(UTC),
                status="success",
                steps_json=steps,
            )
        )
        db_session.commit()

        stats = self._run(patch_get_db)

        assert stats["error"] == "already_completed"
        assert db_session.query(SyncRun).count() == 1


def test_weekly_recompute(db_session, sample_bar, patch_get_db):
    with patch("barsync.jobs.weekly.get_db", patch_get_db):
        stats = run_weekly_recompute(limit_periods=2, today=date(2026, 3, 4))

    assert stats["success"] is True
    assert stats["periods"] == ["2026-W10", "2026-W09"]
    assert db_session.query(CmvSummary).count() == 2
    run = db_session.query(SyncRun).filter_by(target="cron:weekly").one()
    assert run.status == "success"
    assert run.window_start == date(2026, 2, 23)
    assert run.window_end == date(2026, 3, 8)


def test_weekly_rejects_negative_period_count(db_session, sample_bar, patch_get_db):
    with patch("barsync.jobs.weekly.get_db", patch_get_db), pytest.raises(InvalidInput):
        run_weekly_recompute(limit_periods=-1, today=date(2026, 3, 4))

    assert db_session.query(JobLease).count() == 0
    assert db_session.query(SyncRun).count() == 0
