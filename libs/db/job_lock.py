"""Single-flight guard for periodic jobs.

A job holds a row in ``job_locks`` while it runs. A second caller finds the
row and is turned away with ``ALREADY_RUNNING``. Expired rows (a crashed
holder) can be taken over.
"""

import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncIterator, Optional

from sqlalchemy import String, delete, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from libs.common.datetime_utils import utc_now
from libs.common.errors import Conflict
from libs.common.logging import get_logger
from libs.db.base import Base, UTCDateTime

logger = get_logger(__name__)


class JobLock(Base):
    __tablename__ = "job_locks"

    name: Mapped[str] = mapped_column(String(64), primary_key=True)
    holder: Mapped[str] = mapped_column(String(64), nullable=False)
    acquired_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


async def acquire(
    db: AsyncSession, name: str, ttl: timedelta, now: Optional[datetime] = None
) -> Optional[str]:
    """Try to take the lock. Returns a holder token, or None if it is held."""
    now = now or utc_now()
    holder = uuid.uuid4().hex

    try:
        async with db.begin_nested():
            db.add(
                JobLock(
                    name=name, holder=holder, acquired_at=now, expires_at=now + ttl
                )
            )
        await db.commit()
        return holder
    except IntegrityError:
        pass

    result = await db.execute(
        update(JobLock)
        .where(JobLock.name == name, JobLock.expires_at <= now)
        .values(holder=holder, acquired_at=now, expires_at=now + ttl)
    )
    await db.commit()
    if result.rowcount == 1:
        logger.warning("Took over expired job lock %s", name)
        return holder
    return None


async def release(db: AsyncSession, name: str, holder: str) -> None:
    await db.execute(
        delete(JobLock).where(JobLock.name == name, JobLock.holder == holder)
    )
    await db.commit()


@asynccontextmanager
async def single_flight(
    db: AsyncSession,
    name: str,
    ttl: timedelta = timedelta(minutes=30),
    now: Optional[datetime] = None,
) -> AsyncIterator[str]:
    """Run the body only if no other run of ``name`` is in progress."""
    holder = await acquire(db, name, ttl, now)
    if holder is None:
        raise Conflict("ALREADY_RUNNING", f"Job '{name}' is already running")
    try:
        yield holder
    finally:
        await db.rollback()
        await release(db, name, holder)
