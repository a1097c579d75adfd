"""Point-of-sale "period" export adapter (one page per business date)."""

from __future__ import annotations

from typing import Any

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from barsync.config import settings
from barsync.errors import ConfigurationError, UpstreamError
from barsync.sources.base import AdapterContext, HttpSourceAdapter, Page, SourceRecord, parse_day

logger = structlog.get_logger()


def _rows(data: Any) -> list[dict[str, Any]]:
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in ("list", "data"):
            rows = data.get(key)
            if isinstance(rows, list):
                return rows
    raise UpstreamError("Unexpected POS response shape", source="pos")


def visit_external_id(row: dict[str, Any]) -> str | None:
    sale = row.get("vd")
    if sale in (None, ""):
        return None
    return f"{sale}:{row.get('trn') or ''}"


class PosPeriodAdapter(HttpSourceAdapter):
    source_system = "pos"
    data_type = "period"

    def __init__(self, context: AdapterContext, client: httpx.Client | None = None):
        super().__init__(context, client)
        self._base_url = (context.config.get("base_url") or settings.pos_base_url).rstrip("/")
        self._email = context.config.get("email") or settings.pos_email
        password = context.config.get("password")
        if not password and settings.pos_password:
            password = settings.pos_password.get_secret_value()
        self._password = password
        if not self._email or not self._password:
            raise ConfigurationError("POS credentials not configured", details={"bar_id": context.bar_id})
        self._days = context.window.days()
        self._token: str | None = None

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(min=1, max=10),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    def _login(self) -> str:
        response = self._client.post(
            f"{self._base_url}/auth/login",
            json={"email": self._email, "senha": self._password},
        )
        data = self._decode(response)
        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            raise UpstreamError("POS login returned no token", source=self.source_system)
        logger.info("POS session opened", bar_id=self.context.bar_id)
        return str(token)

    def fetch_page(self, cursor: Any | None) -> Page:
        index = cursor or 0
        if index >= len(self._days):
            return Page(records=[], next_cursor=None)
        if self._token is None:
            try:
                self._token = self._login()
            except httpx.TransportError as exc:
                raise UpstreamError(f"POS login failed: {exc}", source=self.source_system) from exc

        day = self._days[index]
        data = self._get_json(
            f"{self._base_url}/periodo",
            params={
                "data_inicio": day.isoformat(),
                "data_fim": day.isoformat(),
                "bar_id": self.context.bar_id,
            },
            headers={"Authorization": f"Bearer {self._token}"},
        )
        records = [
            SourceRecord(
                business_date=parse_day(row.get("dt_gerencial")) or day,
                payload=row,
                external_id=visit_external_id(row),
            )
            for row in _rows(data)
        ]
        next_cursor = index + 1 if index + 1 < len(self._days) else None
        return Page(records=records, next_cursor=next_cursor)
