"""Batched insert-or-update keyed by natural keys."""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from typing import Any

import structlog
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from barsync.config import settings
from barsync.db import dialect_name
from barsync.errors import PersistenceError
from barsync.models import Base

logger = structlog.get_logger()


def chunked(rows: Sequence[Any], size: int) -> Iterator[Sequence[Any]]:
    if size <= 0:
        raise ValueError("batch size must be positive")
    for start in range(0, len(rows), size):
        yield rows[start : start + size]


def dedupe_by_key(rows: Sequence[dict[str, Any]], key_columns: Sequence[str]) -> list[dict[str, Any]]:
    """Collapse rows sharing a natural key, keeping the last occurrence.

    A single INSERT ... ON CONFLICT statement may not touch the same row twice.
    """
    by_key: dict[tuple[Any, ...], dict[str, Any]] = {}
    for row in rows:
        by_key[tuple(row[col] for col in key_columns)] = row
    return list(by_key.values())


def _insert_for(session: Session, model: type[Base]):
    name = dialect_name(session)
    if name == "postgresql":
        return postgresql.insert(model)
    if name == "sqlite":
        return sqlite.insert(model)
    raise PersistenceError(f"Upsert not supported for dialect {name}")


def upsert_rows(
    session: Session,
    model: type[Base],
    rows: Sequence[dict[str, Any]],
    conflict_columns: Sequence[str],
    *,
    update_columns: Sequence[str] | None = None,
    only_if_changed: str | None = None,
    batch_size: int | None = None,
) -> int:
    """Insert rows in fixed-size batches, updating on natural-key conflict.

    ``only_if_changed`` names a column; conflicting rows are then only updated
    when that column's incoming value differs from the stored one.

    Returns the number of rows submitted. Raises PersistenceError on store failure;
    batches already flushed are left to the caller's transaction.
    """
    if not rows:
        return 0
    rows = dedupe_by_key(rows, conflict_columns)
    size = batch_size or settings.process_insert_batch_size
    if update_columns is None:
        update_columns = [col for col in rows[0] if col not in conflict_columns]

    written = 0
    total_batches = (len(rows) + size - 1) // size
    for number, batch in enumerate(chunked(rows, size), start=1):
        stmt = _insert_for(session, model).values(list(batch))
        if update_columns:
            where = None
            if only_if_changed:
                where = model.__table__.c[only_if_changed] != stmt.excluded[only_if_changed]
            stmt = stmt.on_conflict_do_update(
                index_elements=list(conflict_columns),
                set_={col: stmt.excluded[col] for col in update_columns},
                where=where,
            )
        else:
            stmt = stmt.on_conflict_do_nothing(index_elements=list(conflict_columns))
        try:
            session.execute(stmt)
        except SQLAlchemyError as exc:
            logger.error(
                "Upsert batch failed",
                table=model.__tablename__,
                batch=number,
                batches=total_batches,
                error=str(exc),
            )
            raise PersistenceError(
                f"Failed writing {model.__tablename__} batch {number}/{total_batches}",
                details={"written": written},
            ) from exc
        written += len(batch)
        logger.debug("Upsert batch written", table=model.__tablename__, batch=number, rows=len(batch))
    return written
