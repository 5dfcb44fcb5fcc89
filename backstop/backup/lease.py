"""
Run-overlap lease.

A single database row acts as a mutex with a TTL. Acquisition is a
conditional UPDATE that only succeeds when the lease is free or expired, so
a manual trigger cannot run on top of the scheduled run (or vice versa),
even across processes. A crashed holder blocks new runs for at most the TTL.
"""

import uuid
import logging
from contextlib import contextmanager
from datetime import datetime, timedelta

from sqlalchemy import update, or_

from backstop import db
from backstop.models import RunLease


logger = logging.getLogger(__name__)

LEASE_ID = 1


class LeaseUnavailable(Exception):
    """Raised when another backup run holds the lease."""
    pass


def acquire_lease(holder: str, now: datetime, ttl_seconds: int) -> bool:
    """
    Try to take the lease.

    Args:
        holder: Identifier of the caller
        now: Current time (naive UTC)
        ttl_seconds: Lease lifetime

    Returns:
        True if the lease was acquired
    """
    if db.session.get(RunLease, LEASE_ID) is None:
        db.session.add(RunLease(id=LEASE_ID))
        db.session.commit()

    result = db.session.execute(
        update(RunLease)
        .where(RunLease.id == LEASE_ID)
        .where(or_(RunLease.expires_at.is_(None), RunLease.expires_at < now))
        .values(holder=holder, expires_at=now + timedelta(seconds=ttl_seconds))
    )
    db.session.commit()
    return result.rowcount == 1


def release_lease(holder: str):
    """Release the lease if it is still held by holder."""
    db.session.execute(
        update(RunLease)
        .where(RunLease.id == LEASE_ID)
        .where(RunLease.holder == holder)
        .values(holder=None, expires_at=None)
    )
    db.session.commit()


@contextmanager
def run_lease(now: datetime, ttl_seconds: int):
    """
    Hold the lease for the duration of a block.

    Raises:
        LeaseUnavailable: If another run holds an unexpired lease
    """
    holder = uuid.uuid4().hex
    if not acquire_lease(holder, now, ttl_seconds):
        current = db.session.get(RunLease, LEASE_ID)
        until = current.expires_at.isoformat() if current and current.expires_at else 'unknown'
        raise LeaseUnavailable(f"Another backup run holds the lease (expires {until})")

    logger.debug(f"Lease acquired by {holder}")
    try:
        yield holder
    finally:
        try:
            release_lease(holder)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Failed to release run lease: {e}")
