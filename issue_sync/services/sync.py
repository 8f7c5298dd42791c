"""
Sync orchestrator: runs every active tracker query and mirrors the results.

This module provides the SyncOrchestrator class that:
1. Opens a SyncRun and loads active queries by priority
2. Fetches each query's issues through the retry policy
3. Renders each issue with the query's template and upserts a Project
4. Records one detail row per item or failed query and closes the run
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional
from uuid import UUID

from jinja2 import Template
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from issue_sync.models import DetailStatus, SyncQuery, SyncRun, SyncTrigger
from issue_sync.repositories import (
    ProjectRepository,
    QueryRepository,
    SyncRunRepository,
    TemplateRepository,
)
from issue_sync.services.history import SyncHistoryTracker
from issue_sync.services.project_mapper import (
    DataMappingError,
    ProjectMapper,
    get_project_mapper,
)
from issue_sync.services.retry import RetryPolicy, get_retry_policy
from issue_sync.services.template_engine import (
    TemplateEngine,
    TemplateRenderError,
    TemplateSyntaxError,
    get_template_engine,
)
from issue_sync.services.tracker_client import (
    IssueTrackerClient,
    TrackerAuthenticationError,
    TrackerClientError,
    TrackerRateLimitError,
    TrackerTransientError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueryPlan:
    """Detached copy of the query fields a run needs."""
    name: str
    expression: str
    template_id: UUID

    @classmethod
    def from_query(cls, query: SyncQuery) -> "QueryPlan":
        return cls(
            name=query.name,
            expression=query.query_expression,
            template_id=query.template_id,
        )


class SyncOrchestrator:
    """Drives one sync run over all active queries."""

    def __init__(
        self,
        db: AsyncSession,
        tracker_client: IssueTrackerClient,
        retry_policy: RetryPolicy,
        template_engine: TemplateEngine,
        project_mapper: ProjectMapper,
    ):
        """
        Initialize the orchestrator.

        Args:
            db: Async database session used for the whole run
            tracker_client: Shared issue tracker client
            retry_policy: Policy wrapping every tracker call
            template_engine: Engine rendering issues to canonical JSON
            project_mapper: Mapper applying canonical JSON to projects
        """
        self.db = db
        self.tracker = tracker_client
        self.retry = retry_policy
        self.engine = template_engine
        self.mapper = project_mapper
        self.queries = QueryRepository(db)
        self.templates = TemplateRepository(db)
        self.runs = SyncRunRepository(db)

    async def run(self, trigger: SyncTrigger, actor: Optional[str]) -> SyncRun:
        """
        Execute a full sync run.

        Item- and query-level failures are recorded as detail rows. An
        authentication failure or an unexpected exception fails the run
        and stops the remaining queries.

        Args:
            trigger: Whether the run was scheduled or manual
            actor: Identity recorded as triggered_by

        Returns:
            The finished SyncRun
        """
        history = SyncHistoryTracker.start_sync(trigger, actor)
        run = history.run
        await self.runs.add(run)
        await self.db.commit()

        logger.info(f"Sync run {run.id} started ({trigger.value}, by {actor})")

        try:
            # Snapshot first: a rollback further down expires ORM instances
            plans = [QueryPlan.from_query(q) for q in await self.queries.list_active()]
            logger.info(f"Processing {len(plans)} active queries")

            for plan in plans:
                if not await self._process_query(history, plan):
                    break

        except Exception as e:
            logger.error(f"Sync run {run.id} aborted: {e}", exc_info=True)
            await self._discard_pending(run)
            history.fail_sync(f"Unexpected error: {e}")

        history.complete_sync()
        await self.db.commit()
        return run

    async def _process_query(self, history: SyncHistoryTracker, query: QueryPlan) -> bool:
        """
        Fetch and apply one query's issues.

        Returns:
            False if the run must stop, True otherwise
        """
        template = await self.templates.get(query.template_id)
        if template is None:
            await self._record_error(
                history,
                "template_error",
                f"Query '{query.name}': template {query.template_id} not found"
            )
            return True

        try:
            compiled = self.engine.compile(template.template_source)
        except TemplateSyntaxError as e:
            await self._record_error(
                history,
                "template_error",
                f"Query '{query.name}': template '{template.name}' is invalid: {e}"
            )
            return True

        try:
            issues = await self.retry.call(
                lambda: self.tracker.execute(query.expression),
                description=f"Query '{query.name}'"
            )
        except TrackerAuthenticationError as e:
            await self._record_error(history, "authentication_error", f"Query '{query.name}': {e}")
            history.fail_sync(f"Authentication failed on query '{query.name}': {e}")
            await self.db.commit()
            return False
        except TrackerRateLimitError as e:
            await self._record_error(history, "rate_limit_error", f"Query '{query.name}': {e}")
            return True
        except TrackerTransientError as e:
            await self._record_error(history, "retry_exhausted", f"Query '{query.name}': {e}")
            return True
        except TrackerClientError as e:
            await self._record_error(history, "query_error", f"Query '{query.name}': {e}")
            return True

        logger.info(f"Query '{query.name}' returned {len(issues)} issues")
        for issue in issues:
            await self._process_issue(history, compiled, issue)
        return True

    async def _process_issue(
        self,
        history: SyncHistoryTracker,
        compiled: Template,
        issue: Any,
    ) -> None:
        issue_key = "unknown"
        if isinstance(issue, dict):
            issue_key = issue.get("key") or issue.get("id") or issue_key

        try:
            rendered = self.engine.render_compiled(compiled, issue)
        except TemplateRenderError as e:
            await self._record_error(history, "render_error", f"{issue_key}: {e}")
            return

        try:
            mapped = await self.mapper.apply(rendered)
        except DataMappingError as e:
            await self._record_error(history, "mapping_error", f"{issue_key}: {e}")
            return
        except SQLAlchemyError as e:
            logger.error(f"Database error while saving {issue_key}: {e}", exc_info=True)
            await self._discard_pending(history.run)
            await self._record_error(history, "persistence_error", f"{issue_key}: {e}")
            return

        project = mapped.project
        await self._record(
            history,
            mapped.operation,
            DetailStatus.SUCCESS,
            f"Project {mapped.operation}: {project.name} ({project.issue_key})"
        )

    async def _record(
        self,
        history: SyncHistoryTracker,
        operation: str,
        status: DetailStatus,
        message: str,
    ) -> None:
        detail = history.add_detail(operation, status, message)
        await self.runs.add_detail(detail)
        await self.db.commit()

    async def _record_error(self, history: SyncHistoryTracker, operation: str, message: str) -> None:
        logger.error(f"Sync run {history.run.id}: {operation}: {message}")
        await self._record(history, operation, DetailStatus.ERROR, message)

    async def _discard_pending(self, run: SyncRun) -> None:
        # Everything up to the last recorded detail is already committed
        await self.db.rollback()
        await self.db.refresh(run)


def get_sync_orchestrator(db: AsyncSession, tracker_client: IssueTrackerClient) -> SyncOrchestrator:
    """
    Factory function to create a sync orchestrator.

    Args:
        db: Async database session
        tracker_client: Shared issue tracker client

    Returns:
        Configured SyncOrchestrator instance
    """
    return SyncOrchestrator(
        db=db,
        tracker_client=tracker_client,
        retry_policy=get_retry_policy(),
        template_engine=get_template_engine(),
        project_mapper=get_project_mapper(ProjectRepository(db)),
    )
