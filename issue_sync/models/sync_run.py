"""
SyncRun and SyncRunDetail models: the audit ledger of tracker sync runs.
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from issue_sync.database import Base, utcnow
from issue_sync.models.enums import InvalidStateTransition, SyncStatus, SyncTrigger


VALID_SYNC_STATUSES = [s.value for s in SyncStatus]
VALID_SYNC_TRIGGERS = [t.value for t in SyncTrigger]
VALID_DETAIL_STATUSES = ["success", "error"]


class SyncRun(Base):
    """
    One execution of the sync pipeline.

    Created in_progress and closed exactly once, as completed or failed.
    Counters only grow while the run is in progress and always satisfy
    processed_count == success_count + error_count.
    """

    __tablename__ = "sync_runs"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    trigger_type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=SyncStatus.IN_PROGRESS.value,
        index=True
    )
    triggered_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    started_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        index=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Counters
    processed_count: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    success_count: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    error_count: Mapped[int] = mapped_column(Integer, default=0, server_default="0")

    error_summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    details: Mapped[List["SyncRunDetail"]] = relationship(
        "SyncRunDetail",
        back_populates="sync_run",
        cascade="all, delete-orphan",
        order_by="SyncRunDetail.seq"
    )

    __table_args__ = (
        CheckConstraint(
            f"status IN ({', '.join(repr(s) for s in VALID_SYNC_STATUSES)})",
            name="check_valid_sync_status"
        ),
        CheckConstraint(
            f"trigger_type IN ({', '.join(repr(t) for t in VALID_SYNC_TRIGGERS)})",
            name="check_valid_sync_trigger"
        ),
    )

    @property
    def sync_status(self) -> SyncStatus:
        return SyncStatus(self.status)

    @property
    def is_in_progress(self) -> bool:
        return self.sync_status is SyncStatus.IN_PROGRESS

    def transition_to(self, target: SyncStatus) -> None:
        """
        Change the run status, stamping completed_at on the way out of in_progress.

        Raises:
            InvalidStateTransition: If the transition is not allowed
        """
        current = self.sync_status
        if not current.can_transition_to(target):
            raise InvalidStateTransition(
                f"Sync run {self.id}: cannot move from {current.value} to {target.value}"
            )
        self.status = target.value
        self.completed_at = utcnow()

    @property
    def duration_seconds(self) -> Optional[float]:
        """Elapsed seconds of a finished run, None while in progress."""
        if self.completed_at is None or self.started_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    @property
    def success_rate(self) -> float:
        """Percentage of processed items that succeeded; 100.0 when nothing was processed."""
        if not self.processed_count:
            return 100.0
        return round(self.success_count * 100.0 / self.processed_count, 2)

    def __repr__(self) -> str:
        return (
            f"<SyncRun(id={self.id}, "
            f"status={self.status}, "
            f"processed={self.processed_count}, "
            f"success={self.success_count}, "
            f"errors={self.error_count})>"
        )


class SyncRunDetail(Base):
    """
    One audit row of a sync run: a processed item or a query-level failure.

    Rows are append-only and numbered by ``seq`` within their run.
    """

    __tablename__ = "sync_run_details"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    sync_run_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("sync_runs.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    operation: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(10), nullable=False)
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processed_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
        server_default=func.now()
    )

    sync_run: Mapped["SyncRun"] = relationship("SyncRun", back_populates="details")

    __table_args__ = (
        UniqueConstraint("sync_run_id", "seq", name="uq_sync_run_detail_seq"),
        CheckConstraint(
            f"status IN ({', '.join(repr(s) for s in VALID_DETAIL_STATUSES)})",
            name="check_valid_detail_status"
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<SyncRunDetail(run={self.sync_run_id}, "
            f"seq={self.seq}, "
            f"operation={self.operation}, "
            f"status={self.status})>"
        )
