"""
In-memory bookkeeping for a single sync run.

SyncHistoryTracker owns the run's counters, detail numbering and status
changes. It never touches the database; the orchestrator persists the
run and every detail it hands back.
"""

import logging
from typing import Optional
from uuid import uuid4

from issue_sync.database import utcnow
from issue_sync.models import (
    DetailStatus,
    InvalidStateTransition,
    SyncRun,
    SyncRunDetail,
    SyncStatus,
    SyncTrigger,
)

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 2000


def _clip(text: Optional[str]) -> Optional[str]:
    if text is None or len(text) <= MAX_MESSAGE_LENGTH:
        return text
    return text[:MAX_MESSAGE_LENGTH - 3] + "..."


class SyncHistoryTracker:
    """Tracks one SyncRun from start to its single terminal transition."""

    def __init__(self, run: SyncRun, next_seq: int = 1):
        self.run = run
        self._next_seq = next_seq

    @classmethod
    def start_sync(cls, trigger: SyncTrigger, actor: Optional[str]) -> "SyncHistoryTracker":
        run = SyncRun(
            id=uuid4(),
            trigger_type=trigger.value,
            status=SyncStatus.IN_PROGRESS.value,
            triggered_by=actor,
            started_at=utcnow(),
            processed_count=0,
            success_count=0,
            error_count=0,
        )
        return cls(run)

    def add_detail(
        self,
        operation: str,
        status: DetailStatus,
        message: Optional[str] = None,
    ) -> SyncRunDetail:
        """
        Append a detail row and count it.

        Raises:
            InvalidStateTransition: If the run is no longer in progress
        """
        if not self.run.is_in_progress:
            raise InvalidStateTransition(
                f"Sync run {self.run.id} is {self.run.status}; details are closed"
            )

        detail = SyncRunDetail(
            id=uuid4(),
            sync_run_id=self.run.id,
            seq=self._next_seq,
            operation=operation,
            status=status.value,
            message=_clip(message),
            processed_at=utcnow(),
        )
        self._next_seq += 1

        self.run.processed_count += 1
        if status is DetailStatus.SUCCESS:
            self.run.success_count += 1
        else:
            self.run.error_count += 1
        return detail

    def complete_sync(self) -> bool:
        """Mark the run completed. No-op (returns False) once the run has finished."""
        if not self.run.sync_status.can_transition_to(SyncStatus.COMPLETED):
            return False
        self.run.transition_to(SyncStatus.COMPLETED)
        logger.info(
            f"Sync run {self.run.id} completed: processed={self.run.processed_count}, "
            f"success={self.run.success_count}, errors={self.run.error_count}"
        )
        return True

    def fail_sync(self, reason: str) -> bool:
        """Mark the run failed with ``reason``. No-op (returns False) once the run has finished."""
        if not self.run.sync_status.can_transition_to(SyncStatus.FAILED):
            return False
        self.run.transition_to(SyncStatus.FAILED)
        self.run.error_summary = _clip(reason)
        logger.error(f"Sync run {self.run.id} failed: {reason}")
        return True
