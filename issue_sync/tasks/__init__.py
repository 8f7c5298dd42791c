"""
Background tasks and scheduling module.

Provides:
- SyncScheduler: lock-guarded scheduled and manual sync execution
- Scheduler helpers: start/stop the cron trigger and report job status
"""

from issue_sync.tasks.scheduler import (
    SYNC_JOB_ID,
    SyncScheduler,
    get_sync_scheduler,
    setup_scheduler,
    shutdown_scheduler,
    get_job_status,
)

__all__ = [
    "SYNC_JOB_ID",
    "SyncScheduler",
    "get_sync_scheduler",
    "setup_scheduler",
    "shutdown_scheduler",
    "get_job_status",
]
