"""
SchedulerLock model: one row per named cluster-wide lock.
"""

from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from issue_sync.database import Base


class SchedulerLock(Base):
    """
    Lease-style lock row.

    A lock is held while ``lock_until`` is in the future; acquiring an
    expired lock is a conditional update on that column.
    """

    __tablename__ = "scheduler_locks"

    name: Mapped[str] = mapped_column(String(64), primary_key=True)
    lock_until: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    locked_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    locked_by: Mapped[str] = mapped_column(String(255), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<SchedulerLock(name='{self.name}', "
            f"locked_by='{self.locked_by}', "
            f"until={self.lock_until})>"
        )
