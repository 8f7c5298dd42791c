"""
Services module for the issue tracker client and sync business logic.
"""

from issue_sync.services.tracker_client import (
    IssueTrackerClient,
    TrackerAPIError,
    TrackerAuthenticationError,
    TrackerRateLimitError,
    TrackerTransientError,
    TrackerClientError,
    get_tracker_client
)
from issue_sync.services.retry import (
    RetryPolicy,
    get_retry_policy
)
from issue_sync.services.template_engine import (
    TemplateEngine,
    TemplateSyntaxError,
    TemplateRenderError,
    ValidationResult,
    get_template_engine
)
from issue_sync.services.project_mapper import (
    DataMappingError,
    MappedProject,
    ProjectMapper,
    StatusAliasTable,
    get_project_mapper
)
from issue_sync.services.history import SyncHistoryTracker
from issue_sync.services.locking import (
    LockHandle,
    LockProvider,
    SyncAlreadyRunningError
)
from issue_sync.services.sync import (
    SyncOrchestrator,
    get_sync_orchestrator
)

__all__ = [
    "IssueTrackerClient",
    "TrackerAPIError",
    "TrackerAuthenticationError",
    "TrackerRateLimitError",
    "TrackerTransientError",
    "TrackerClientError",
    "get_tracker_client",
    "RetryPolicy",
    "get_retry_policy",
    "TemplateEngine",
    "TemplateSyntaxError",
    "TemplateRenderError",
    "ValidationResult",
    "get_template_engine",
    "DataMappingError",
    "MappedProject",
    "ProjectMapper",
    "StatusAliasTable",
    "get_project_mapper",
    "SyncHistoryTracker",
    "LockHandle",
    "LockProvider",
    "SyncAlreadyRunningError",
    "SyncOrchestrator",
    "get_sync_orchestrator",
]
