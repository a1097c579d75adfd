"""Weekly CMV spreadsheet adapter (column-block pagination over the values API).

The sheet holds one column per week: row 1 is the ``Semana N`` header, rows 2-3
the week bounds as ``dd/mm/yyyy`` and the rows below the stock, consumption and
adjustment figures. Each week column becomes one raw record.
"""

from __future__ import annotations

import re
from datetime import date
from typing import Any
from urllib.parse import quote

import google.auth.exceptions
import httpx
import structlog
from google.auth.transport.requests import Request
from google.oauth2 import service_account

from barsync.aggregate.periods import week_of
from barsync.config import settings
from barsync.errors import ConfigurationError, UpstreamError
from barsync.sources.base import AdapterContext, HttpSourceAdapter, Page, SourceRecord

logger = structlog.get_logger()

SCOPES = ["https://www.googleapis.com/auth/spreadsheets.readonly"]
SHEET_NAME = "cmv semanal"
PAGE_SIZE = 26
FIRST_COLUMN = 1  # B; column A holds the row labels
LAST_COLUMN = 129  # DZ
ROW_COUNT = 19

_WEEK_HEADER = re.compile(r"Semana\s*(\d+)", re.IGNORECASE)


def column_letter(index: int) -> str:
    """A1 letters for a 0-based column index (0 -> A, 26 -> AA)."""
    letters = ""
    index += 1
    while index:
        index, remainder = divmod(index - 1, 26)
        letters = chr(ord("A") + remainder) + letters
    return letters


def parse_sheet_date(value: Any) -> date | None:
    """``dd/mm/yyyy`` cell to a date."""
    parts = str(value or "").strip().split("/")
    if len(parts) != 3:
        return None
    try:
        day, month, year = (int(part) for part in parts)
        return date(year, month, day)
    except ValueError:
        return None


def load_credentials(context: AdapterContext) -> service_account.Credentials:
    """Service-account credentials from the bar's config, else from the configured key file."""
    info = context.config.get("service_account")
    if info:
        return service_account.Credentials.from_service_account_info(info, scopes=SCOPES)
    if settings.google_service_account_file:
        return service_account.Credentials.from_service_account_file(
            settings.google_service_account_file, scopes=SCOPES
        )
    raise ConfigurationError("Spreadsheet service account not configured", details={"bar_id": context.bar_id})


class CmvSheetAdapter(HttpSourceAdapter):
    source_system = "sheets"
    data_type = "cmv_weeks"
    page_size = PAGE_SIZE

    def __init__(self, context: AdapterContext, client: httpx.Client | None = None, credentials: Any = None):
        super().__init__(context, client)
        self._spreadsheet_id = context.config.get("spreadsheet_id")
        if not self._spreadsheet_id:
            raise ConfigurationError("Spreadsheet id not configured", details={"bar_id": context.bar_id})
        self._sheet_name = context.config.get("sheet_name") or SHEET_NAME
        self._base_url = (context.config.get("base_url") or settings.sheets_base_url).rstrip("/")
        self._credentials = credentials or load_credentials(context)

    def _access_token(self) -> str:
        if not self._credentials.valid:
            try:
                self._credentials.refresh(Request())
            except google.auth.exceptions.GoogleAuthError as exc:
                logger.error("Service account token refresh failed", bar_id=self.context.bar_id, error=str(exc))
                raise UpstreamError(f"Spreadsheet authentication failed: {exc}", source=self.source_system) from exc
        return self._credentials.token

    def _range(self, first: int, last: int) -> str:
        return f"'{self._sheet_name}'!{column_letter(first)}1:{column_letter(last)}{ROW_COUNT}"

    def fetch_page(self, cursor: Any | None) -> Page:
        first = cursor or FIRST_COLUMN
        last = min(first + self.page_size - 1, LAST_COLUMN)
        data = self._get_json(
            f"{self._base_url}/spreadsheets/{self._spreadsheet_id}/values/{quote(self._range(first, last), safe='')}",
            params={"majorDimension": "COLUMNS"},
            headers={"Authorization": f"Bearer {self._access_token()}"},
        )
        columns = (data.get("values") or []) if isinstance(data, dict) else []

        records = []
        for offset, cells in enumerate(columns):
            record = self._week_record(first + offset, cells)
            if record is not None:
                records.append(record)

        requested = last - first + 1
        next_cursor = last + 1 if len(columns) >= requested and last < LAST_COLUMN else None
        return Page(records=records, next_cursor=next_cursor)

    def _week_record(self, index: int, cells: list[Any]) -> SourceRecord | None:
        if not cells:
            return None
        match = _WEEK_HEADER.search(str(cells[0]))
        if not match:
            return None
        if not any(str(cell).strip() for cell in cells[3:]):
            return None

        start = parse_sheet_date(cells[1]) if len(cells) > 1 else None
        if start is None:
            try:
                start = date.fromisocalendar(self.context.window.end.year, int(match.group(1)), 1)
            except ValueError:
                logger.warning("Unplaceable sheet week", column=column_letter(index), header=cells[0])
                return None
        week = week_of(start)
        if week.end < self.context.window.start or week.start > self.context.window.end:
            return None

        return SourceRecord(
            business_date=week.start,
            payload={"header": str(cells[0]), "column": column_letter(index), "cells": [str(cell) for cell in cells]},
            external_id=week.key,
        )
