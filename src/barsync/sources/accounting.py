"""Accounting schedules adapter (OData ``$skip``/``$top`` pagination)."""

from __future__ import annotations

from typing import Any

import httpx

from barsync.config import settings
from barsync.errors import ConfigurationError
from barsync.sources.base import AdapterContext, HttpSourceAdapter, Page, SourceRecord, config_secret, parse_day

PAGE_SIZE = 500


class AccountingSchedulesAdapter(HttpSourceAdapter):
    source_system = "accounting"
    data_type = "schedules"
    page_size = PAGE_SIZE

    def __init__(self, context: AdapterContext, client: httpx.Client | None = None):
        super().__init__(context, client)
        self._token = config_secret(context, "api_token", settings.accounting_api_token)
        if not self._token:
            raise ConfigurationError("Accounting API token not configured", details={"bar_id": context.bar_id})
        self._base_url = (context.config.get("base_url") or settings.accounting_base_url).rstrip("/")

    def fetch_page(self, cursor: Any | None) -> Page:
        skip = cursor or 0
        window = self.context.window
        data = self._get_json(
            f"{self._base_url}/schedules",
            params={
                "$filter": (
                    f"accrualDate ge {window.start.isoformat()} and accrualDate le {window.end.isoformat()}"
                ),
                "$orderby": "accrualDate",
                "$skip": skip,
                "$top": self.page_size,
            },
            headers={"apitoken": self._token},
        )
        rows = (data.get("items") or []) if isinstance(data, dict) else (data or [])
        records = []
        for row in rows:
            accrual_day = parse_day(row.get("accrualDate") or row.get("dueDate"))
            if accrual_day is None:
                continue
            records.append(
                SourceRecord(
                    business_date=accrual_day,
                    payload=row,
                    external_id=str(row["scheduleId"]) if row.get("scheduleId") else None,
                )
            )
        next_cursor = skip + self.page_size if len(rows) >= self.page_size else None
        return Page(records=records, next_cursor=next_cursor)
