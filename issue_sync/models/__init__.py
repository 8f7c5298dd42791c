"""
Database models for the issue sync service.

This module exports all SQLAlchemy models and the state enumerations
used throughout the application.
"""

from issue_sync.models.enums import (
    DetailStatus,
    InvalidStateTransition,
    ProjectStatus,
    SyncStatus,
    SyncTrigger,
)
from issue_sync.models.template import ResponseTemplate
from issue_sync.models.query import SyncQuery
from issue_sync.models.project import (
    Project,
    ProjectClosedError,
    ISSUE_KEY_PATTERN,
    MAX_NAME_LENGTH,
    MAX_DESCRIPTION_LENGTH,
)
from issue_sync.models.sync_run import SyncRun, SyncRunDetail
from issue_sync.models.scheduler_lock import SchedulerLock

# Export all models
__all__ = [
    "ResponseTemplate",
    "SyncQuery",
    "Project",
    "SyncRun",
    "SyncRunDetail",
    "SchedulerLock",
    "DetailStatus",
    "ProjectStatus",
    "SyncStatus",
    "SyncTrigger",
    "InvalidStateTransition",
    "ProjectClosedError",
    "ISSUE_KEY_PATTERN",
    "MAX_NAME_LENGTH",
    "MAX_DESCRIPTION_LENGTH",
]
