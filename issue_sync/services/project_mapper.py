"""
Maps canonical project JSON onto Project records.

Create-or-update keyed by issue key: the first sighting of a key creates
a project, every later one updates it in place.
"""

import json
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Union

from dateutil.relativedelta import relativedelta
from pydantic import ValidationError

from issue_sync.models import (
    InvalidStateTransition,
    MAX_DESCRIPTION_LENGTH,
    MAX_NAME_LENGTH,
    Project,
    ProjectStatus,
)
from issue_sync.repositories import ProjectRepository
from issue_sync.schemas.canonical import CanonicalProject

logger = logging.getLogger(__name__)

# Tried in order, first match wins
DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y-%m-%dT%H:%M:%S.%fZ",
    "%Y-%m-%dT%H:%M:%S.%f%z",
    "%Y-%m-%dT%H:%M:%SZ",
    "%Y-%m-%dT%H:%M:%S%z",
    "%Y-%m-%dT%H:%M:%S",
    "%d/%b/%y",
    "%d/%b/%Y",
)

DEFAULT_PROJECT_DURATION = relativedelta(months=6)


class DataMappingError(Exception):
    """Raised when canonical JSON is missing required fields or cannot be applied."""
    pass


def parse_date(value: Optional[str]) -> Optional[date]:
    """Parse a tracker date string with the known formats; None if nothing matches."""
    if not value or not value.strip():
        return None
    text = value.strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    logger.warning(f"Could not parse date '{text}'")
    return None


class StatusAliasTable:
    """Resolves arbitrary tracker status names to canonical project statuses."""

    def __init__(self, aliases: Mapping[str, str], default: str = "PLANNING"):
        self._aliases = {
            self._normalize(alias): ProjectStatus(canonical.upper())
            for alias, canonical in aliases.items()
        }
        self.default = ProjectStatus(default.upper())

    @staticmethod
    def _normalize(raw: str) -> str:
        return re.sub(r"[\s\-]+", "_", raw.strip().upper())

    def resolve(self, raw: Optional[str]) -> ProjectStatus:
        if not raw or not raw.strip():
            return self.default
        status = self._aliases.get(self._normalize(raw))
        if status is None:
            logger.warning(f"Unknown tracker status '{raw}', using {self.default.value}")
            return self.default
        return status

    @classmethod
    def from_settings(cls) -> "StatusAliasTable":
        from issue_sync.config import settings

        return cls(settings.status_aliases, default=settings.PROJECT_DEFAULT_STATUS)


@dataclass
class MappedProject:
    """Result of applying canonical JSON: the saved project and whether it is new."""
    project: Project
    created: bool

    @property
    def operation(self) -> str:
        return "created" if self.created else "updated"


class ProjectMapper:
    """Applies canonical project JSON to the project store."""

    def __init__(
        self,
        repository: ProjectRepository,
        status_aliases: StatusAliasTable,
        actor: str = "tracker-sync",
        today: Callable[[], date] = date.today,
    ):
        self.repository = repository
        self.status_aliases = status_aliases
        self.actor = actor
        self._today = today

    async def apply(self, canonical: Union[str, Mapping[str, Any]]) -> MappedProject:
        """
        Create or update the project identified by the canonical issueKey.

        Args:
            canonical: Rendered JSON text or an already decoded mapping

        Returns:
            MappedProject with the saved project

        Raises:
            DataMappingError: On missing/invalid fields or a rejected update
        """
        payload = self._parse(canonical)

        issue_key = (payload.issue_key or "").strip().upper()
        if not issue_key:
            raise DataMappingError("Required field 'issueKey' is missing or empty")

        name = (payload.project_name or "").strip()
        if not name:
            raise DataMappingError(
                f"Required field 'projectName' is missing or empty for {issue_key}"
            )

        existing = await self.repository.find_by_issue_key(issue_key)

        name = self._truncate(name, MAX_NAME_LENGTH, "name", issue_key)
        description = self._truncate(
            (payload.description or "").strip() or None,
            MAX_DESCRIPTION_LENGTH,
            "description",
            issue_key,
        )
        status = self.status_aliases.resolve(payload.status)
        start_date, end_date = self._reconcile_dates(
            parse_date(payload.start_date),
            parse_date(payload.end_date),
            issue_key,
        )
        custom_fields = self._custom_fields(payload)

        try:
            if existing is None:
                if start_date is None:
                    start_date = self._today()
                if end_date is None:
                    end_date = start_date + DEFAULT_PROJECT_DURATION
                start_date, end_date = self._reconcile_dates(start_date, end_date, issue_key)

                project = Project.from_tracker(
                    issue_key=issue_key,
                    name=name,
                    description=description,
                    start_date=start_date,
                    end_date=end_date,
                    custom_fields=custom_fields,
                    created_by=self.actor,
                )
                created = True
            else:
                # Keep stored dates when the new value did not parse
                start_date, end_date = self._reconcile_dates(
                    start_date if start_date is not None else existing.start_date,
                    end_date if end_date is not None else existing.end_date,
                    issue_key,
                )
                existing.update_from_tracker(
                    name=name,
                    description=description,
                    start_date=start_date,
                    end_date=end_date,
                    custom_fields=custom_fields,
                    updated_by=self.actor,
                )
                project = existing
                created = False
        except ValueError as e:
            raise DataMappingError(str(e)) from e

        self._apply_status(project, status)
        await self.repository.save(project)

        logger.debug(f"Project {issue_key} {'created' if created else 'updated'}")
        return MappedProject(project=project, created=created)

    def _parse(self, canonical: Union[str, Mapping[str, Any]]) -> CanonicalProject:
        if isinstance(canonical, str):
            try:
                canonical = json.loads(canonical)
            except ValueError as e:
                raise DataMappingError(f"Rendered output is not valid JSON: {e}") from e
        if not isinstance(canonical, Mapping):
            raise DataMappingError("Rendered output must be a JSON object")
        try:
            return CanonicalProject.model_validate(canonical)
        except ValidationError as e:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
            raise DataMappingError(f"Invalid canonical fields: {fields}") from e

    @staticmethod
    def _truncate(
        value: Optional[str],
        limit: int,
        field: str,
        issue_key: str,
    ) -> Optional[str]:
        if value is None or len(value) <= limit:
            return value
        logger.warning(
            f"Project {issue_key}: {field} truncated from {len(value)} to {limit} characters"
        )
        return value[:limit]

    @staticmethod
    def _reconcile_dates(
        start_date: Optional[date],
        end_date: Optional[date],
        issue_key: str,
    ) -> Tuple[Optional[date], Optional[date]]:
        if start_date and end_date and start_date > end_date:
            adjusted = start_date + DEFAULT_PROJECT_DURATION
            logger.warning(
                f"Project {issue_key}: start date {start_date} is after end date "
                f"{end_date}; end date set to {adjusted}"
            )
            return start_date, adjusted
        return start_date, end_date

    @staticmethod
    def _custom_fields(payload: CanonicalProject) -> Optional[Dict[str, Any]]:
        fields: Dict[str, Any] = dict(payload.custom_fields or {})
        if payload.labels is not None:
            fields["labels"] = payload.labels
        if payload.components is not None:
            fields["components"] = payload.components
        return fields or None

    @staticmethod
    def _apply_status(project: Project, status: ProjectStatus) -> None:
        if project.project_status is status:
            return
        try:
            project.transition_to(status)
        except InvalidStateTransition as e:
            logger.warning(f"{e}; keeping {project.status}")


def get_project_mapper(repository: ProjectRepository) -> ProjectMapper:
    """
    Factory function to create a project mapper from settings.

    Args:
        repository: Project repository bound to the current session

    Returns:
        Configured ProjectMapper instance
    """
    from issue_sync.config import settings

    return ProjectMapper(
        repository=repository,
        status_aliases=StatusAliasTable.from_settings(),
        actor=settings.SYNC_PROJECT_CREATED_BY,
    )
