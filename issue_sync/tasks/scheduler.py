"""
Background job scheduler for the periodic issue tracker sync.

Uses APScheduler to fire the sync on a cron expression. Every firing
first takes the cluster-wide sync lock, so with several instances
running only one of them syncs at a time; the others skip quietly.
"""

import logging
from datetime import timedelta
from typing import Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from issue_sync.config import settings
from issue_sync.database import AsyncSessionLocal
from issue_sync.models import SyncRun, SyncTrigger
from issue_sync.services.locking import LockHandle, LockProvider, SyncAlreadyRunningError
from issue_sync.services.sync import SyncOrchestrator, get_sync_orchestrator
from issue_sync.services.tracker_client import IssueTrackerClient

logger = logging.getLogger(__name__)

SYNC_JOB_ID = "tracker_sync"

# Global scheduler instance, created by setup_scheduler
scheduler: Optional[AsyncIOScheduler] = None


class SyncScheduler:
    """Runs sync executions under the distributed sync lock."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        lock_provider: LockProvider,
        tracker_client: IssueTrackerClient,
        lock_name: str,
        lock_at_most_for: timedelta,
        lock_at_least_for: timedelta,
        scheduled_actor: str = "system",
        orchestrator_factory: Callable[
            [AsyncSession, IssueTrackerClient], SyncOrchestrator
        ] = get_sync_orchestrator,
    ):
        self.session_factory = session_factory
        self.lock_provider = lock_provider
        self.tracker_client = tracker_client
        self.lock_name = lock_name
        self.lock_at_most_for = lock_at_most_for
        self.lock_at_least_for = lock_at_least_for
        self.scheduled_actor = scheduled_actor
        self.orchestrator_factory = orchestrator_factory

    async def run_on_schedule(self) -> Optional[SyncRun]:
        """
        Scheduled entry point. Never raises.

        Returns:
            The finished SyncRun, or None if skipped or failed
        """
        try:
            handle = await self._acquire()
        except Exception as e:
            logger.error(f"Could not acquire sync lock: {e}", exc_info=True)
            return None

        if handle is None:
            logger.debug("Sync lock held by another instance, skipping scheduled sync")
            return None

        try:
            return await self._execute(SyncTrigger.SCHEDULED, self.scheduled_actor)
        except Exception as e:
            logger.error(f"Scheduled sync failed: {e}", exc_info=True)
            return None
        finally:
            await self._release(handle)

    async def run_now(self, actor: str) -> SyncRun:
        """
        Manual entry point, outside the schedule but under the same lock.

        Raises:
            SyncAlreadyRunningError: If another run holds the lock
        """
        handle = await self._acquire()
        if handle is None:
            raise SyncAlreadyRunningError("A sync run is already in progress")

        try:
            return await self._execute(SyncTrigger.MANUAL, actor)
        finally:
            await self._release(handle)

    async def _acquire(self) -> Optional[LockHandle]:
        return await self.lock_provider.try_acquire(
            self.lock_name,
            lock_at_most_for=self.lock_at_most_for,
            lock_at_least_for=self.lock_at_least_for,
        )

    async def _release(self, handle: LockHandle) -> None:
        try:
            await self.lock_provider.release(handle)
        except Exception as e:
            # The lease still expires at lock_until
            logger.error(f"Failed to release sync lock: {e}", exc_info=True)

    async def _execute(self, trigger: SyncTrigger, actor: str) -> SyncRun:
        async with self.session_factory() as db:
            orchestrator = self.orchestrator_factory(db, self.tracker_client)
            return await orchestrator.run(trigger, actor)


def get_sync_scheduler(tracker_client: IssueTrackerClient) -> SyncScheduler:
    """
    Factory function to create the sync scheduler from settings.

    Args:
        tracker_client: Shared issue tracker client

    Returns:
        Configured SyncScheduler instance
    """
    return SyncScheduler(
        session_factory=AsyncSessionLocal,
        lock_provider=LockProvider(AsyncSessionLocal),
        tracker_client=tracker_client,
        lock_name=settings.SYNC_LOCK_NAME,
        lock_at_most_for=timedelta(seconds=settings.SYNC_LOCK_AT_MOST_FOR),
        lock_at_least_for=timedelta(seconds=settings.SYNC_LOCK_AT_LEAST_FOR),
        scheduled_actor=settings.SYNC_ACTOR,
    )


def setup_scheduler(sync_scheduler: SyncScheduler) -> AsyncIOScheduler:
    """
    Configure and start the background scheduler.

    Must be called from within the running event loop.

    Args:
        sync_scheduler: Sync scheduler whose run_on_schedule is fired by cron

    Returns:
        The running AsyncIOScheduler
    """
    global scheduler

    if scheduler is not None and scheduler.running:
        logger.warning("Scheduler is already running")
        return scheduler

    scheduler = AsyncIOScheduler()

    if settings.SYNC_SCHEDULER_ENABLED:
        scheduler.add_job(
            sync_scheduler.run_on_schedule,
            CronTrigger.from_crontab(settings.SYNC_SCHEDULE_CRON),
            id=SYNC_JOB_ID,
            name="Issue Tracker Sync",
            replace_existing=True,
            misfire_grace_time=600,  # 10 minute grace period
            coalesce=True,  # Combine missed runs into one
            max_instances=1
        )
    else:
        logger.info("Scheduled sync disabled by configuration")

    scheduler.start()
    logger.info(f"Background scheduler started (cron: {settings.SYNC_SCHEDULE_CRON})")
    return scheduler


def shutdown_scheduler():
    """
    Gracefully shutdown the scheduler.
    Waits for running jobs to complete before shutting down.
    """
    if scheduler is not None and scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Background scheduler stopped")
    else:
        logger.info("Scheduler was not running")


def get_job_status() -> list:
    """
    Get status of all scheduled jobs.

    Returns:
        List of job status dictionaries containing:
        - id: Job identifier
        - name: Human-readable job name
        - next_run: ISO-formatted next run time (or None)
        - trigger: Trigger description
    """
    if scheduler is None:
        return []

    jobs = []
    for job in scheduler.get_jobs():
        jobs.append({
            "id": job.id,
            "name": job.name,
            "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
            "trigger": str(job.trigger)
        })
    return jobs
