"""Raw landing store: one row per external record, upserted by natural key."""

from __future__ import annotations

import hashlib
import json
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import tuple_
from sqlalchemy.orm import Session

from barsync.models import RawRecord
from barsync.sources.base import SourceRecord
from barsync.storage.upsert import upsert_rows

RAW_KEY_COLUMNS = ("source_system", "bar_id", "business_date", "dedupe_key")


@dataclass
class StoreStats:
    new: int = 0
    updated: int = 0
    unchanged: int = 0

    @property
    def written(self) -> int:
        return self.new + self.updated


def compute_payload_hash(payload: dict[str, Any]) -> str:
    encoded = json.dumps(payload, sort_keys=True, ensure_ascii=True, default=str).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


def dedupe_key_for(external_id: str | None, payload_hash: str) -> str:
    if external_id:
        return external_id
    return f"sha256:{payload_hash}"


def _existing_hashes(session: Session, keys: list[tuple[Any, ...]]) -> dict[tuple[Any, ...], str]:
    if not keys:
        return {}
    rows = (
        session.query(
            RawRecord.source_system,
            RawRecord.bar_id,
            RawRecord.business_date,
            RawRecord.dedupe_key,
            RawRecord.payload_hash,
        )
        .filter(
            tuple_(RawRecord.source_system, RawRecord.bar_id, RawRecord.business_date, RawRecord.dedupe_key).in_(keys)
        )
        .all()
    )
    return {(row[0], row[1], row[2], row[3]): row[4] for row in rows}


def store_page(
    session: Session,
    *,
    source_system: str,
    data_type: str,
    bar_id: int,
    records: Sequence[SourceRecord],
    received_at: datetime | None = None,
) -> StoreStats:
    """Upsert one page of records into the raw store.

    A record whose payload hash matches the stored row is left untouched. A
    changed payload replaces the stored one and is queued for processing again.
    """
    stats = StoreStats()
    if not records:
        return stats
    received_at = received_at or datetime.now(UTC)

    rows: dict[tuple[Any, ...], dict[str, Any]] = {}
    for record in records:
        payload_hash = compute_payload_hash(record.payload)
        dedupe_key = dedupe_key_for(record.external_id, payload_hash)
        key = (source_system, bar_id, record.business_date, dedupe_key)
        rows[key] = {
            "source_system": source_system,
            "data_type": data_type,
            "bar_id": bar_id,
            "business_date": record.business_date,
            "external_id": record.external_id,
            "payload_hash": payload_hash,
            "dedupe_key": dedupe_key,
            "payload": record.payload,
            "received_at": received_at,
            "processed": False,
            "processed_at": None,
            "error": None,
        }

    existing = _existing_hashes(session, list(rows))
    for key, row in rows.items():
        stored_hash = existing.get(key)
        if stored_hash is None:
            stats.new += 1
        elif stored_hash != row["payload_hash"]:
            stats.updated += 1
        else:
            stats.unchanged += 1

    upsert_rows(
        session,
        RawRecord,
        list(rows.values()),
        RAW_KEY_COLUMNS,
        update_columns=["data_type", "external_id", "payload_hash", "payload", "received_at", "processed", "processed_at", "error"],
        only_if_changed="payload_hash",
    )
    return stats
