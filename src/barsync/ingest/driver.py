"""Generic paginated ingestion driver shared by every source adapter."""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any

import structlog
from sqlalchemy.orm import Session

from barsync.config import settings
from barsync.errors import PersistenceError, UpstreamError
from barsync.ingest.raw_store import store_page
from barsync.sources.base import Page, SourceAdapter

logger = structlog.get_logger()


@dataclass
class IngestResult:
    source: str
    bar_id: int
    pages: int = 0
    collected: int = 0
    new: int = 0
    updated: int = 0
    unchanged: int = 0
    hit_page_ceiling: bool = False
    error: str | None = None
    business_dates: set = field(default_factory=set)

    @property
    def ok(self) -> bool:
        return self.error is None

    def as_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "bar_id": self.bar_id,
            "pages": self.pages,
            "collected": self.collected,
            "inserted": self.new + self.updated,
            "new": self.new,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "hit_page_ceiling": self.hit_page_ceiling,
            "errors": 0 if self.error is None else 1,
            "error": self.error,
        }


def iter_pages(
    adapter: SourceAdapter,
    *,
    max_pages: int | None = None,
    page_delay: float | None = None,
    sleep_fn: Callable[[float], None] = time.sleep,
) -> Iterator[Page]:
    """Yield pages until the adapter returns no next cursor or the ceiling is hit."""
    if max_pages is None:
        max_pages = settings.sync_max_pages
    if page_delay is None:
        page_delay = settings.sync_page_delay_seconds

    cursor: Any | None = None
    for number in range(1, max_pages + 1):
        page = adapter.fetch_page(cursor)
        yield page
        if page.next_cursor is None:
            return
        if number == max_pages:
            logger.warning("Page ceiling reached", source=adapter.source_system, max_pages=max_pages)
            return
        cursor = page.next_cursor
        if page_delay > 0:
            sleep_fn(page_delay)


def ingest_source(
    session: Session,
    adapter: SourceAdapter,
    bar_id: int,
    *,
    max_pages: int | None = None,
    page_delay: float | None = None,
    sleep_fn: Callable[[float], None] = time.sleep,
) -> IngestResult:
    """Page through a source, committing each page to the raw store as it arrives.

    An upstream or store failure stops pagination; pages already committed stay
    and the failure is reported in ``IngestResult.error``.
    """
    if max_pages is None:
        max_pages = settings.sync_max_pages
    result = IngestResult(source=adapter.source_system, bar_id=bar_id)
    last_page: Page | None = None

    try:
        for page in iter_pages(adapter, max_pages=max_pages, page_delay=page_delay, sleep_fn=sleep_fn):
            last_page = page
            result.pages += 1
            result.collected += len(page.records)
            stats = store_page(
                session,
                source_system=adapter.source_system,
                data_type=adapter.data_type,
                bar_id=bar_id,
                records=page.records,
            )
            session.commit()
            result.new += stats.new
            result.updated += stats.updated
            result.unchanged += stats.unchanged
            result.business_dates.update(record.business_date for record in page.records)
            logger.info(
                "Page stored",
                source=adapter.source_system,
                bar_id=bar_id,
                page=result.pages,
                records=len(page.records),
                new=stats.new,
                updated=stats.updated,
            )
    except UpstreamError as exc:
        logger.warning(
            "Upstream error, stopping pagination",
            source=adapter.source_system,
            bar_id=bar_id,
            pages_stored=result.pages,
            error=exc.message,
        )
        result.error = exc.message
    except PersistenceError as exc:
        session.rollback()
        logger.error("Raw store write failed", source=adapter.source_system, bar_id=bar_id, error=exc.message)
        result.error = exc.message
    finally:
        adapter.close()

    if last_page is not None and last_page.next_cursor is not None and result.pages >= max_pages:
        result.hit_page_ceiling = True
    return result
