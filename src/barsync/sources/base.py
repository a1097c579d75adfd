"""Adapter contract for external data sources."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Protocol

import httpx
import structlog

from barsync.config import settings
from barsync.errors import UpstreamError

logger = structlog.get_logger()

USER_AGENT = "barsync/0.1 (+data sync)"


@dataclass(frozen=True)
class SourceRecord:
    """One external record plus the keys the raw store needs."""

    business_date: date
    payload: dict[str, Any]
    external_id: str | None = None


@dataclass(frozen=True)
class Page:
    records: list[SourceRecord]
    next_cursor: Any | None = None


@dataclass(frozen=True)
class SyncWindow:
    start: date
    end: date

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError(f"window end {self.end} precedes start {self.start}")

    def days(self) -> list[date]:
        return [date.fromordinal(ordinal) for ordinal in range(self.start.toordinal(), self.end.toordinal() + 1)]

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


@dataclass
class AdapterContext:
    bar_id: int
    window: SyncWindow
    config: dict[str, Any] = field(default_factory=dict)


class SourceAdapter(Protocol):
    """Pages through one external API.

    ``fetch_page(None)`` returns the first page; a ``None`` next cursor means no
    more pages. Page-number, offset and opaque cursor sources all fit.
    """

    @property
    def source_system(self) -> str: ...

    @property
    def data_type(self) -> str: ...

    @property
    def page_size(self) -> int | None: ...

    def fetch_page(self, cursor: Any | None) -> Page: ...

    def close(self) -> None: ...


class HttpSourceAdapter:
    """Shared httpx plumbing for JSON APIs."""

    source_system = "http"
    data_type = "records"
    page_size: int | None = None

    def __init__(self, context: AdapterContext, client: httpx.Client | None = None):
        self.context = context
        self._client = client or httpx.Client(
            timeout=settings.http_timeout_seconds,
            headers={"User-Agent": USER_AGENT},
        )
        self._owns_client = client is None

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def _get_json(self, url: str, *, params: dict[str, Any] | None = None, headers: dict[str, str] | None = None) -> Any:
        try:
            response = self._client.get(url, params=params, headers=headers)
        except httpx.RequestError as exc:
            logger.error("Request error", source=self.source_system, url=url, error=str(exc))
            raise UpstreamError(f"Request to {self.source_system} failed: {exc}", source=self.source_system) from exc
        return self._decode(response)

    def _post_json(self, url: str, *, json: Any, headers: dict[str, str] | None = None) -> Any:
        try:
            response = self._client.post(url, json=json, headers=headers)
        except httpx.RequestError as exc:
            logger.error("Request error", source=self.source_system, url=url, error=str(exc))
            raise UpstreamError(f"Request to {self.source_system} failed: {exc}", source=self.source_system) from exc
        return self._decode(response)

    def _decode(self, response: httpx.Response) -> Any:
        if response.status_code >= 400:
            logger.warning("HTTP error", source=self.source_system, status=response.status_code, url=str(response.url))
            raise UpstreamError(
                f"{self.source_system} API error: HTTP {response.status_code}",
                source=self.source_system,
                status=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamError(f"Invalid JSON from {self.source_system}", source=self.source_system) from exc


def config_secret(context: AdapterContext, key: str, fallback: Any) -> str | None:
    """Per-bar config value, falling back to a settings value (plain or SecretStr)."""
    value = context.config.get(key)
    if value:
        return str(value)
    if fallback is None:
        return None
    if hasattr(fallback, "get_secret_value"):
        return fallback.get_secret_value() or None
    return str(fallback) or None


def parse_day(value: Any) -> date | None:
    """Leading ``YYYY-MM-DD`` of a date/timestamp string."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None
