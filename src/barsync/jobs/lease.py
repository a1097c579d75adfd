"""Time-boxed job leases stored in the database."""

from __future__ import annotations

import os
import socket
from datetime import UTC, datetime, timedelta

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from barsync.config import settings
from barsync.models import JobLease

logger = structlog.get_logger()


def default_holder() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=UTC)


def acquire_lease(
    session: Session,
    job_name: str,
    holder: str | None = None,
    ttl_seconds: int | None = None,
    now: datetime | None = None,
) -> bool:
    """Take the lease for ``job_name`` unless another holder has an unexpired one.

    Commits on success so the lease is visible to concurrent invocations.
    """
    holder = holder or default_holder()
    now = now or datetime.now(UTC)
    expires_at = now + timedelta(seconds=ttl_seconds or settings.lease_ttl_seconds)

    lease = session.query(JobLease).filter_by(job_name=job_name).with_for_update().first()
    if lease is not None:
        if lease.holder != holder and _as_utc(lease.expires_at) > now:
            logger.info("Lease held elsewhere", job=job_name, holder=lease.holder, expires_at=str(lease.expires_at))
            session.rollback()
            return False
        lease.holder = holder
        lease.acquired_at = now
        lease.expires_at = expires_at
    else:
        session.add(JobLease(job_name=job_name, holder=holder, acquired_at=now, expires_at=expires_at))

    try:
        session.commit()
    except IntegrityError:
        # Lost the insert race
        session.rollback()
        return False
    logger.debug("Lease acquired", job=job_name, holder=holder)
    return True


def release_lease(session: Session, job_name: str, holder: str | None = None) -> None:
    holder = holder or default_holder()
    session.query(JobLease).filter_by(job_name=job_name, holder=holder).delete(synchronize_session=False)
    session.commit()
