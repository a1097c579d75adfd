"""Review aggregator dataset adapter (offset/limit pagination)."""

from __future__ import annotations

from typing import Any

import httpx

from barsync.config import settings
from barsync.errors import ConfigurationError
from barsync.sources.base import AdapterContext, HttpSourceAdapter, Page, SourceRecord, config_secret, parse_day

PAGE_SIZE = 1000


class ReviewsDatasetAdapter(HttpSourceAdapter):
    source_system = "reviews"
    data_type = "reviews"
    page_size = PAGE_SIZE

    def __init__(self, context: AdapterContext, client: httpx.Client | None = None):
        super().__init__(context, client)
        self._token = config_secret(context, "token", settings.apify_token)
        self._dataset_id = context.config.get("dataset_id")
        if not self._token or not self._dataset_id:
            raise ConfigurationError("Reviews token or dataset id not configured", details={"bar_id": context.bar_id})
        self._base_url = (context.config.get("base_url") or settings.reviews_base_url).rstrip("/")

    def fetch_page(self, cursor: Any | None) -> Page:
        offset = cursor or 0
        rows = self._get_json(
            f"{self._base_url}/datasets/{self._dataset_id}/items",
            params={"token": self._token, "offset": offset, "limit": self.page_size},
        )
        if not isinstance(rows, list):
            rows = []
        records = []
        for row in rows:
            published = parse_day(row.get("publishedAtDate"))
            if published is None or not self.context.window.contains(published):
                continue
            records.append(
                SourceRecord(
                    business_date=published,
                    payload=row,
                    external_id=str(row["reviewId"]) if row.get("reviewId") else None,
                )
            )
        next_cursor = offset + self.page_size if len(rows) >= self.page_size else None
        return Page(records=records, next_cursor=next_cursor)
