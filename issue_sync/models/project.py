"""
Project model: local project records kept in step with tracker issues.
"""

import re
from datetime import date, datetime
from typing import Any, Dict, Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, CheckConstraint, Date, DateTime, String, Text, Uuid, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from issue_sync.database import Base, utcnow
from issue_sync.models.enums import InvalidStateTransition, ProjectStatus


ISSUE_KEY_PATTERN = re.compile(r"^[A-Z][A-Z0-9_]*-[1-9][0-9]*$")
MAX_NAME_LENGTH = 255
MAX_DESCRIPTION_LENGTH = 1000

VALID_PROJECT_STATUSES = [s.value for s in ProjectStatus]


class ProjectClosedError(ValueError):
    """Raised when a completed or cancelled project receives a tracker update."""
    pass


class Project(Base):
    """
    A project mirrored from a tracker issue.

    The issue key is the external identity: it is unique, validated on
    creation and never changed afterwards. Status changes go through
    ``transition_to`` so the lifecycle in ``ProjectStatus`` is enforced.
    """

    __tablename__ = "projects"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    name: Mapped[str] = mapped_column(String(MAX_NAME_LENGTH), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(
        String(MAX_DESCRIPTION_LENGTH),
        nullable=True
    )
    status: Mapped[str] = mapped_column(
        String(20),
        default=ProjectStatus.PLANNING.value,
        server_default=ProjectStatus.PLANNING.value,
        index=True
    )
    start_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    issue_key: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
        index=True
    )
    custom_fields: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        JSON().with_variant(JSONB, "postgresql"),
        nullable=True
    )

    # Audit
    created_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    updated_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
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

    __table_args__ = (
        CheckConstraint(
            f"status IN ({', '.join(repr(s) for s in VALID_PROJECT_STATUSES)})",
            name="check_valid_project_status"
        ),
        CheckConstraint(
            "end_date IS NULL OR start_date IS NULL OR end_date >= start_date",
            name="check_project_date_order"
        ),
    )

    @classmethod
    def from_tracker(
        cls,
        issue_key: str,
        name: str,
        description: Optional[str],
        start_date: Optional[date],
        end_date: Optional[date],
        custom_fields: Optional[Dict[str, Any]],
        created_by: str,
    ) -> "Project":
        """
        Build a new project in the PLANNING state from tracker data.

        Raises:
            ValueError: If the issue key, name or date range is invalid
        """
        issue_key = (issue_key or "").strip().upper()
        if not ISSUE_KEY_PATTERN.match(issue_key):
            raise ValueError(f"Invalid issue key format: '{issue_key}'")
        _check_fields(name, start_date, end_date)

        return cls(
            issue_key=issue_key,
            name=name,
            description=description,
            status=ProjectStatus.PLANNING.value,
            start_date=start_date,
            end_date=end_date,
            custom_fields=custom_fields,
            created_by=created_by,
            updated_by=created_by,
        )

    def update_from_tracker(
        self,
        name: str,
        description: Optional[str],
        start_date: Optional[date],
        end_date: Optional[date],
        custom_fields: Optional[Dict[str, Any]],
        updated_by: str,
    ) -> None:
        """
        Overwrite tracker-owned fields.

        All checks run before any attribute is touched, so a rejected update
        leaves the project unchanged.

        Raises:
            ProjectClosedError: If the project is completed or cancelled
            ValueError: If the name or date range is invalid
        """
        if self.project_status.is_closed:
            raise ProjectClosedError(
                f"Project {self.issue_key} is {self.status} and cannot be updated"
            )
        _check_fields(name, start_date, end_date)

        self.name = name
        self.description = description
        self.start_date = start_date
        self.end_date = end_date
        self.custom_fields = custom_fields
        self.updated_by = updated_by

    def transition_to(self, target: ProjectStatus) -> None:
        """
        Move to ``target`` if the lifecycle allows it.

        Raises:
            InvalidStateTransition: If the transition is not allowed
        """
        current = self.project_status
        if not current.can_transition_to(target):
            raise InvalidStateTransition(
                f"Project {self.issue_key}: cannot move from {current.value} to {target.value}"
            )
        self.status = target.value

    @property
    def project_status(self) -> ProjectStatus:
        return ProjectStatus(self.status or ProjectStatus.PLANNING.value)

    def __repr__(self) -> str:
        return (
            f"<Project(id={self.id}, "
            f"issue_key='{self.issue_key}', "
            f"status={self.status})>"
        )


def _check_fields(name: str, start_date: Optional[date], end_date: Optional[date]) -> None:
    if not name or not name.strip():
        raise ValueError("Project name is required")
    if len(name) > MAX_NAME_LENGTH:
        raise ValueError(f"Project name exceeds {MAX_NAME_LENGTH} characters")
    if start_date and end_date and end_date < start_date:
        raise ValueError("Project end date cannot be before its start date")
