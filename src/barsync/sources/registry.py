"""Map source types to adapter classes."""

from __future__ import annotations

import httpx

from barsync.errors import InvalidInput
from barsync.sources.accounting import AccountingSchedulesAdapter
from barsync.sources.base import AdapterContext, HttpSourceAdapter
from barsync.sources.pos import PosPeriodAdapter
from barsync.sources.reviews import ReviewsDatasetAdapter
from barsync.sources.sheets import CmvSheetAdapter
from barsync.sources.ticketing import TicketingOrdersAdapter

ADAPTERS: dict[str, type[HttpSourceAdapter]] = {
    "pos": PosPeriodAdapter,
    "ticketing": TicketingOrdersAdapter,
    "accounting": AccountingSchedulesAdapter,
    "reviews": ReviewsDatasetAdapter,
    "sheets": CmvSheetAdapter,
}

SOURCE_ALIASES = {
    "contahub": "pos",
    "sympla": "ticketing",
    "nibo": "accounting",
    "google_reviews": "reviews",
    "apify": "reviews",
    "google_sheets": "sheets",
}


def normalize_source_type(source_type: str) -> str:
    return SOURCE_ALIASES.get(source_type, source_type)


def build_adapter(source_type: str, context: AdapterContext, client: httpx.Client | None = None) -> HttpSourceAdapter:
    source_type = normalize_source_type(source_type)
    adapter_cls = ADAPTERS.get(source_type)
    if adapter_cls is None:
        raise InvalidInput(f"Unknown source: {source_type}. Use: {', '.join(sorted(ADAPTERS))}")
    return adapter_cls(context, client)
