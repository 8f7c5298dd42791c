"""
State enumerations shared by the sync models.

Each enumeration declares its legal transitions explicitly through
``can_transition_to`` so that every mutation boundary can check them.
"""

from enum import Enum


class InvalidStateTransition(Exception):
    """Raised when a state change is not allowed by the state's transition table."""
    pass


class SyncTrigger(str, Enum):
    MANUAL = "manual"
    SCHEDULED = "scheduled"


class SyncStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    def can_transition_to(self, target: "SyncStatus") -> bool:
        # Terminal once left in_progress; same-state moves are rejected too
        if self is SyncStatus.IN_PROGRESS:
            return target in (SyncStatus.COMPLETED, SyncStatus.FAILED)
        return False

    @property
    def is_terminal(self) -> bool:
        return self is not SyncStatus.IN_PROGRESS


class DetailStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"

    def can_transition_to(self, target: "DetailStatus") -> bool:
        # Detail rows are append-only
        return False


class ProjectStatus(str, Enum):
    PLANNING = "PLANNING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

    def can_transition_to(self, target: "ProjectStatus") -> bool:
        if self is target:
            return True
        return target in _PROJECT_TRANSITIONS[self]

    @property
    def is_closed(self) -> bool:
        return self in (ProjectStatus.COMPLETED, ProjectStatus.CANCELLED)


_PROJECT_TRANSITIONS = {
    ProjectStatus.PLANNING: {ProjectStatus.IN_PROGRESS, ProjectStatus.CANCELLED},
    ProjectStatus.IN_PROGRESS: {ProjectStatus.COMPLETED, ProjectStatus.CANCELLED},
    ProjectStatus.COMPLETED: set(),
    ProjectStatus.CANCELLED: set(),
}
