"""Pytest fixtures for barsync tests."""

from collections.abc import Callable, Generator
from contextlib import contextmanager
from datetime import UTC, date, datetime
from typing import Any

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from barsync.models import Bar, Base, RawRecord, SourceConfig
from barsync.ingest.raw_store import compute_payload_hash, dedupe_key_for


@pytest.fixture
def engine():
    """Fresh in-memory database per test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db_session(engine) -> Generator[Session, None, None]:
    session_local = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    session = session_local()
    yield session
    session.close()


@pytest.fixture
def patch_get_db(db_session: Session) -> Callable[[], Any]:
    """Stand-in for ``get_db`` that hands out the test session."""

    @contextmanager
    def fake_get_db():
        yield db_session
        db_session.commit()

    return fake_get_db


@pytest.fixture
def sample_bar(db_session: Session) -> Bar:
    bar = Bar(slug="ordinario", name="Ordinario Bar", active=True)
    db_session.add(bar)
    db_session.commit()
    return bar


@pytest.fixture
def make_source_config(db_session: Session) -> Callable[..., SourceConfig]:
    def _make(bar: Bar, source_type: str, **config: Any) -> SourceConfig:
        source_config = SourceConfig(bar_id=bar.id, source_type=source_type, config_json=config, active=True)
        db_session.add(source_config)
        db_session.commit()
        return source_config

    return _make


@pytest.fixture
def make_raw(db_session: Session) -> Callable[..., RawRecord]:
    """Insert a pending raw record directly."""

    def _make(
        bar: Bar,
        source_system: str,
        data_type: str,
        payload: Any,
        *,
        business_date: date,
        external_id: str | None = None,
    ) -> RawRecord:
        payload_hash = compute_payload_hash(payload) if isinstance(payload, dict) else "0" * 64
        raw = RawRecord(
            source_system=source_system,
            data_type=data_type,
            bar_id=bar.id,
            business_date=business_date,
            external_id=external_id,
            payload_hash=payload_hash,
            dedupe_key=dedupe_key_for(external_id, payload_hash),
            payload=payload,
            received_at=datetime.now(UTC),
            processed=False,
        )
        db_session.add(raw)
        db_session.commit()
        return raw

    return _make


def _json_transport(handler: Callable[[httpx.Request], Any]) -> httpx.MockTransport:
    def _handle(request: httpx.Request) -> httpx.Response:
        result = handler(request)
        if isinstance(result, httpx.Response):
            return result
        return httpx.Response(200, json=result)

    return httpx.MockTransport(_handle)


@pytest.fixture
def json_transport() -> Callable[[Callable[[httpx.Request], Any]], httpx.MockTransport]:
    """Build a MockTransport whose handler returns a JSON body or a ready Response."""
    return _json_transport
