"""
SyncQuery model: a saved tracker search executed on every sync run.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from issue_sync.database import Base, utcnow


class SyncQuery(Base):
    """
    A tracker query expression paired with the template used to render its results.

    Active queries run in ascending priority order; ties are broken by
    creation time.
    """

    __tablename__ = "sync_queries"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    query_expression: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    template_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("response_templates.id"),
        nullable=False,
        index=True
    )

    priority: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        server_default="true",
        index=True
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utcnow,
        server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow
    )

    template: Mapped["ResponseTemplate"] = relationship(
        "ResponseTemplate",
        back_populates="queries"
    )

    __table_args__ = (
        CheckConstraint("priority >= 0", name="check_query_priority_non_negative"),
        Index("idx_sync_queries_active_priority", "is_active", "priority", "created_at"),
    )

    def activate(self) -> None:
        self.is_active = True

    def deactivate(self) -> None:
        self.is_active = False

    def __repr__(self) -> str:
        return (
            f"<SyncQuery(id={self.id}, "
            f"name='{self.name}', "
            f"priority={self.priority}, "
            f"active={self.is_active})>"
        )
