"""Ticketing platform orders adapter (page-number pagination per event)."""

from __future__ import annotations

from typing import Any

import httpx

from barsync.config import settings
from barsync.errors import ConfigurationError
from barsync.sources.base import AdapterContext, HttpSourceAdapter, Page, SourceRecord, config_secret, parse_day

PAGE_SIZE = 100


class TicketingOrdersAdapter(HttpSourceAdapter):
    """Walks ``/events/{id}/orders?page=N`` for each configured event.

    Cursor is ``(event_index, page_number)``. An event is exhausted on a short
    page or when the API reports ``pagination.has_next == false``.
    """

    source_system = "ticketing"
    data_type = "orders"
    page_size = PAGE_SIZE

    def __init__(self, context: AdapterContext, client: httpx.Client | None = None):
        super().__init__(context, client)
        self._token = config_secret(context, "token", settings.ticketing_token)
        if not self._token:
            raise ConfigurationError("Ticketing token not configured", details={"bar_id": context.bar_id})
        self._base_url = (context.config.get("base_url") or settings.ticketing_base_url).rstrip("/")
        self._event_ids = [str(event_id) for event_id in context.config.get("event_ids", [])]

    def fetch_page(self, cursor: Any | None) -> Page:
        event_index, page_number = cursor or (0, 1)
        if event_index >= len(self._event_ids):
            return Page(records=[], next_cursor=None)

        event_id = self._event_ids[event_index]
        data = self._get_json(
            f"{self._base_url}/public/v1.5.1/events/{event_id}/orders",
            params={"page": page_number, "page_size": self.page_size},
            headers={"s_token": self._token},
        )
        rows = (data.get("data") or []) if isinstance(data, dict) else []
        records = []
        for row in rows:
            order_day = parse_day(row.get("order_date"))
            if order_day is None or not self.context.window.contains(order_day):
                continue
            records.append(
                SourceRecord(
                    business_date=order_day,
                    payload={**row, "event_id": row.get("event_id") or event_id},
                    external_id=f"{event_id}:{row.get('id')}" if row.get("id") else None,
                )
            )

        pagination = data.get("pagination") if isinstance(data, dict) else None
        has_next = len(rows) >= self.page_size
        if isinstance(pagination, dict) and pagination.get("has_next") is False:
            has_next = False

        if has_next:
            next_cursor: tuple[int, int] | None = (event_index, page_number + 1)
        elif event_index + 1 < len(self._event_ids):
            next_cursor = (event_index + 1, 1)
        else:
            next_cursor = None
        return Page(records=records, next_cursor=next_cursor)
