"""
Cluster-wide named locks stored in the scheduler_locks table.

Locks are leases: a holder owns the lock until ``lock_until``. Acquiring
never blocks; if another process holds an unexpired lease the caller
gets None and is expected to skip its work.
"""

import logging
import os
import socket
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from issue_sync.database import utcnow
from issue_sync.models import SchedulerLock

logger = logging.getLogger(__name__)


class SyncAlreadyRunningError(Exception):
    """Raised when a manual sync is requested while another run holds the lock."""
    pass


@dataclass(frozen=True)
class LockHandle:
    name: str
    locked_by: str
    locked_at: datetime
    lock_until: datetime
    lock_at_least_for: timedelta
    lock_at_most_for: timedelta


def default_owner() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


class LockProvider:
    """Acquires and releases named lease locks through conditional writes."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        owner: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self.owner = owner or default_owner()
        self._clock = clock

    async def try_acquire(
        self,
        name: str,
        lock_at_most_for: timedelta,
        lock_at_least_for: timedelta = timedelta(0),
    ) -> Optional[LockHandle]:
        """
        Take the lock if nobody holds an unexpired lease on it.

        Args:
            name: Lock name
            lock_at_most_for: Lease length; the lock frees itself after this
            lock_at_least_for: Minimum time the lock stays taken after acquiring

        Returns:
            LockHandle when acquired, None when the lock is held elsewhere
        """
        now = self._clock()
        handle = LockHandle(
            name=name,
            locked_by=self.owner,
            locked_at=now,
            lock_until=now + lock_at_most_for,
            lock_at_least_for=lock_at_least_for,
            lock_at_most_for=lock_at_most_for,
        )

        async with self._session_factory() as db:
            # First use of this name: plain insert
            db.add(SchedulerLock(
                name=name,
                lock_until=handle.lock_until,
                locked_at=now,
                locked_by=self.owner,
            ))
            try:
                await db.commit()
                logger.debug(f"Lock '{name}' created and acquired by {self.owner}")
                return handle
            except IntegrityError:
                await db.rollback()

            # Row exists: take it over only if the lease has expired
            result = await db.execute(
                update(SchedulerLock)
                .where(SchedulerLock.name == name, SchedulerLock.lock_until <= now)
                .values(lock_until=handle.lock_until, locked_at=now, locked_by=self.owner)
                .execution_options(synchronize_session=False)
            )
            await db.commit()

        if result.rowcount == 1:
            logger.debug(f"Lock '{name}' acquired by {self.owner}")
            return handle

        logger.debug(f"Lock '{name}' is held elsewhere")
        return None

    async def release(self, handle: LockHandle) -> None:
        """
        Release a lock, honouring its minimum hold time.

        Only the lease recorded in ``handle`` is touched; if another owner has
        taken the lock over in the meantime nothing changes.
        """
        now = self._clock()
        if now > handle.lock_until:
            logger.warning(
                f"Lock '{handle.name}' was held for {now - handle.locked_at}, longer than "
                f"its maximum of {handle.lock_at_most_for}; another instance may have run concurrently"
            )

        unlock_at = max(now, handle.locked_at + handle.lock_at_least_for)

        async with self._session_factory() as db:
            result = await db.execute(
                update(SchedulerLock)
                .where(
                    SchedulerLock.name == handle.name,
                    SchedulerLock.locked_by == handle.locked_by,
                    SchedulerLock.locked_at == handle.locked_at,
                )
                .values(lock_until=unlock_at)
                .execution_options(synchronize_session=False)
            )
            await db.commit()

        if result.rowcount == 0:
            logger.warning(f"Lock '{handle.name}' was no longer owned by {handle.locked_by}")
        else:
            logger.debug(f"Lock '{handle.name}' released until {unlock_at}")
