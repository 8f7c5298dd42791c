"""
ResponseTemplate model: template source used to render tracker issues.
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID, uuid4

from sqlalchemy import DateTime, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from issue_sync.database import Base, utcnow


class ResponseTemplate(Base):
    """
    A named template that turns a raw tracker issue into canonical project JSON.

    The source is rendered by the sandboxed template engine; it is validated
    on every create or update.
    """

    __tablename__ = "response_templates"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    template_source: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

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

    queries: Mapped[List["SyncQuery"]] = relationship(
        "SyncQuery",
        back_populates="template"
    )

    def __repr__(self) -> str:
        return f"<ResponseTemplate(id={self.id}, name='{self.name}')>"
