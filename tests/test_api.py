"""Tests for the HTTP surface."""

from datetime import UTC, date, datetime
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from pydantic import SecretStr
from sqlalchemy.orm import sessionmaker

from barsync.api import app as app_module
from barsync.api.app import app, get_session
from barsync.models import SaleVisit, SyncRun


@pytest.fixture
def client(engine):
    testing_session_local = sessionmaker(bind=engine, autoflush=False, autocommit=False)

    def override_get_session():
        session = testing_session_local()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_session] = override_get_session
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def cron_secret(monkeypatch):
    monkeypatch.setattr(app_module.settings, "cron_secret", SecretStr("cron-secret"))
    return "Bearer cron-secret"


class TestDispatchRoute:
    def test_unknown_action_is_400(self, client):
        response = client.post("/dispatch", json={"action": "bogus"})

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert "bogus" in body["error"]
        assert body["error_code"] == "INVALID_ACTION"
        assert "timestamp" in body

    def test_envelope_and_status_passthrough(self, client):
        envelope = {"success": True, "action": "process", "dispatched_to": "/process", "result": {}, "timestamp": "t"}
        with patch("barsync.api.app.dispatch", return_value=(207, envelope)) as mock_dispatch:
            response = client.post("/dispatch", json={"action": "process"}, headers={"Authorization": "Bearer abc"})

        assert response.status_code == 207
        assert response.json() == envelope
        mock_dispatch.assert_called_once_with({"action": "process"}, "Bearer abc")

    def test_non_json_body(self, client):
        response = client.post("/dispatch", content=b"not json", headers={"Content-Type": "application/json"})
        assert response.status_code == 400


class TestSyncRoute:
    def test_unknown_source(self, client):
        response = client.post("/sync/ifood", json={"bar_id": 1})
        assert response.status_code == 400

    def test_missing_bar_id(self, client):
        response = client.post("/sync/pos", json={})
        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_INPUT"

    def test_inverted_window(self, client):
        response = client.post("/sync/pos", json={"bar_id": 1, "start_date": "2026-03-05", "end_date": "2026-03-01"})
        assert response.status_code == 400

    def test_runs_source_sync(self, client):
        result = {"success": True, "status": "success", "collected": 3}
        with patch("barsync.api.app.run_source_sync", return_value=result) as mock_sync:
            response = client.post("/sync/contahub", json={"bar_id": 3, "start_date": "2026-03-02"})

        assert response.status_code == 200
        assert response.json()["collected"] == 3
        args = mock_sync.call_args.args
        assert args[1:3] == (3, "pos")
        assert args[3].start == args[3].end == date(2026, 3, 2)


class TestProcessRoute:
    def test_empty_queue(self, client):
        response = client.post("/process", json={"max_records": 10})
        assert response.status_code == 200
        assert response.json()["success"] is True
        assert response.json()["processed"] == 0


class TestRecomputeRoute:
    def test_single_period(self, client, db_session, sample_bar):
        db_session.add(
            SaleVisit(
                bar_id=sample_bar.id,
                source_key="v1",
                raw_record_id=0,
                business_date=date(2026, 3, 2),
                gross_amount=100.0,
                people=2,
                updated_at=datetime.now(UTC),
            )
        )
        db_session.commit()

        response = client.post("/recompute", json={"bar_id": sample_bar.id, "period_key": "2026-W10"})

        assert response.status_code == 200
        body = response.json()
        assert body["recalculadas"] == 1
        assert body["data"]["performance"]["average_ticket"] == 50.0

    def test_requires_period(self, client, sample_bar):
        response = client.post("/recompute", json={"bar_id": sample_bar.id})
        assert response.status_code == 400

    def test_bad_period_key(self, client, sample_bar):
        response = client.post("/recompute", json={"bar_id": sample_bar.id, "period_key": "March"})
        assert response.status_code == 400

    def test_recalcular_todas(self, client, sample_bar):
        response = client.post("/recompute", json={"recalcular_todas": True, "limit_periods": 2})
        assert response.status_code == 200
        body = response.json()
        assert body["recalculadas"] == 2
        assert body["erros"] == 0
        assert isinstance(body["erros"], int)
        assert body["erros_detalhes"] == []


class TestCronRoute:
    def test_rejects_bad_secret(self, client, cron_secret):
        with patch("barsync.api.app.run_daily_sync") as mock_job:
            response = client.get("/cron/daily", headers={"Authorization": "Bearer wrong"})
        assert response.status_code == 401
        mock_job.assert_not_called()

    def test_rejects_when_secret_unset(self, client, monkeypatch):
        monkeypatch.setattr(app_module.settings, "cron_secret", None)
        response = client.post("/cron/daily", headers={"Authorization": "Bearer "})
        assert response.status_code == 401

    def test_unknown_job(self, client, cron_secret):
        response = client.post("/cron/hourly", headers={"Authorization": cron_secret})
        assert response.status_code == 404

    def test_runs_daily(self, client, cron_secret):
        stats = {"success": True, "steps": {"ingest": {"status": "success"}}}
        with patch("barsync.api.app.run_daily_sync", return_value=stats):
            response = client.post("/cron/daily", headers={"Authorization": cron_secret})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["steps"]["ingest"]["status"] == "success"
        assert "timestamp" in body

    def test_failed_job_is_500(self, client, cron_secret):
        with patch("barsync.api.app.run_weekly_recompute", return_value={"success": False, "error": "boom"}):
            response = client.get("/cron/weekly", headers={"Authorization": cron_secret})
        assert response.status_code == 500
        assert response.json()["error"] == "boom"


def test_runs_lists_recent(client, db_session, sample_bar):
    db_session.add(
        SyncRun(
            target="pos",
            bar_id=sample_bar.id,
            window_start=date(2026, 3, 2),
            window_end=date(2026, 3, 2),
            started_at=datetime.now(UTC),
            status="success",
            counts_json={"collected": 4, "inserted": 4, "errors": 0},
        )
    )
    db_session.commit()

    response = client.get("/runs", params={"target": "pos"})

    assert response.status_code == 200
    runs = response.json()["runs"]
    assert len(runs) == 1
    assert runs[0]["counts"]["collected"] == 4
