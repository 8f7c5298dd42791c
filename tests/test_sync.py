"""
Tests for the sync orchestrator.

Runs the full pipeline against a SQLite database with a mocked tracker
client and a retry policy that never really sleeps.
"""

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from issue_sync.database import utcnow
from issue_sync.models import Project, SyncRun, SyncRunDetail, SyncTrigger
from issue_sync.services.tracker_client import (
    TrackerAuthenticationError,
    TrackerClientError,
    TrackerRateLimitError,
    TrackerTransientError,
)


def route(responses: dict):
    """
    Build an execute() side effect keyed by query expression.

    Each value is a list of issues, an exception, or a list of outcomes
    consumed one call at a time.
    """
    calls = {expression: 0 for expression in responses}

    async def _execute(expression):
        outcome = responses[expression]
        if isinstance(outcome, tuple):
            outcome = outcome[min(calls[expression], len(outcome) - 1)]
        calls[expression] += 1
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    return _execute


async def load_details(db_session, run: SyncRun):
    result = await db_session.execute(
        select(SyncRunDetail)
        .where(SyncRunDetail.sync_run_id == run.id)
        .order_by(SyncRunDetail.seq)
    )
    return list(result.scalars().all())


async def find_project(db_session, issue_key: str):
    result = await db_session.execute(select(Project).where(Project.issue_key == issue_key))
    return result.scalar_one_or_none()


def assert_counters_consistent(run: SyncRun, details) -> None:
    assert run.processed_count == len(details)
    assert run.processed_count == run.success_count + run.error_count
    assert run.success_count == sum(1 for d in details if d.status == "success")
    assert [d.seq for d in details] == list(range(1, len(details) + 1))


@pytest.mark.asyncio
@pytest.mark.sync
class TestSyncRun:
    """End-to-end sync runs."""

    async def test_creates_new_and_updates_existing_projects(
        self,
        db_session,
        make_orchestrator,
        mock_tracker_client,
        create_query,
        create_project,
        issue_factory,
    ):
        """One new and one known issue give one created and one updated project."""
        await create_query(name="Q1", query_expression="project = PROJ", priority=1)
        existing = await create_project(issue_key="PROJ-2", name="Old name")

        mock_tracker_client.execute.side_effect = route({
            "project = PROJ": [
                issue_factory("PROJ-1", summary="Brand new", start="2024-02-01", due="2024-04-30"),
                issue_factory("PROJ-2", summary="New name"),
            ],
        })

        run = await make_orchestrator(db_session).run(SyncTrigger.SCHEDULED, "system")

        assert run.status == "completed"
        assert run.trigger_type == "scheduled"
        assert run.triggered_by == "system"
        assert run.completed_at is not None
        assert (run.processed_count, run.success_count, run.error_count) == (2, 2, 0)

        details = await load_details(db_session, run)
        assert [d.operation for d in details] == ["created", "updated"]
        assert details[0].message == "Project created: Brand new (PROJ-1)"
        assert_counters_consistent(run, details)

        created = await find_project(db_session, "PROJ-1")
        assert created is not None
        assert created.name == "Brand new"
        updated = await find_project(db_session, "PROJ-2")
        assert updated.id == existing.id
        assert updated.name == "New name"

    async def test_mapping_error_is_item_level(
        self,
        db_session,
        make_orchestrator,
        mock_tracker_client,
        create_query,
        issue_factory,
    ):
        """An issue without a name is recorded and the rest of the run continues."""
        await create_query(name="Q2", query_expression="project = BAD")
        mock_tracker_client.execute.side_effect = route({
            "project = BAD": [
                issue_factory("BAD-1", summary=None),
                issue_factory("BAD-2", summary="Fine"),
            ],
        })

        run = await make_orchestrator(db_session).run(SyncTrigger.MANUAL, "alice")

        assert run.status == "completed"
        assert (run.processed_count, run.success_count, run.error_count) == (2, 1, 1)

        details = await load_details(db_session, run)
        assert details[0].operation == "mapping_error"
        assert details[0].status == "error"
        assert "BAD-1" in details[0].message
        assert "projectName" in details[0].message
        assert details[1].operation == "created"
        assert await find_project(db_session, "BAD-1") is None
        assert_counters_consistent(run, details)

    async def test_exhausted_retries_skip_to_next_query(
        self,
        db_session,
        make_orchestrator,
        mock_tracker_client,
        no_sleep,
        create_query,
        issue_factory,
    ):
        """Three 503s give one error detail; the next query still runs."""
        await create_query(name="Q3", query_expression="project = FLAKY", priority=1)
        await create_query(name="Q4", query_expression="project = OK", priority=2)
        mock_tracker_client.execute.side_effect = route({
            "project = FLAKY": TrackerTransientError("Server error 503", status_code=503),
            "project = OK": [issue_factory("OK-1", summary="Works")],
        })

        run = await make_orchestrator(db_session).run(SyncTrigger.SCHEDULED, "system")

        expressions = [c.args[0] for c in mock_tracker_client.execute.await_args_list]
        assert expressions == ["project = FLAKY"] * 3 + ["project = OK"]
        assert [c.args[0] for c in no_sleep.await_args_list] == [1.0, 2.0]

        details = await load_details(db_session, run)
        assert [d.operation for d in details] == ["retry_exhausted", "created"]
        assert "Q3" in details[0].message
        assert run.status == "completed"
        assert (run.processed_count, run.success_count, run.error_count) == (2, 1, 1)

    async def test_transient_failure_recovers(
        self,
        db_session,
        make_orchestrator,
        mock_tracker_client,
        create_query,
        issue_factory,
    ):
        await create_query(query_expression="project = BLIP")
        mock_tracker_client.execute.side_effect = route({
            "project = BLIP": (
                TrackerTransientError("Timeout calling /search"),
                [issue_factory("BLIP-1", summary="Eventually")],
            ),
        })

        run = await make_orchestrator(db_session).run(SyncTrigger.SCHEDULED, "system")

        assert (run.processed_count, run.success_count, run.error_count) == (1, 1, 0)
        assert mock_tracker_client.execute.await_count == 2

    async def test_authentication_error_fails_run(
        self,
        db_session,
        make_orchestrator,
        mock_tracker_client,
        no_sleep,
        create_query,
        issue_factory,
    ):
        """A 401 is not retried, stops remaining queries and fails the run."""
        await create_query(name="first", query_expression="project = A", priority=1)
        await create_query(name="second", query_expression="project = B", priority=2)
        await create_query(name="third", query_expression="project = C", priority=3)
        mock_tracker_client.execute.side_effect = route({
            "project = A": [issue_factory("A-1", summary="Before the failure")],
            "project = B": TrackerAuthenticationError(
                "Authentication failed (HTTP 401)", status_code=401
            ),
            "project = C": [issue_factory("C-1", summary="Never reached")],
        })

        run = await make_orchestrator(db_session).run(SyncTrigger.SCHEDULED, "system")

        expressions = [c.args[0] for c in mock_tracker_client.execute.await_args_list]
        assert expressions == ["project = A", "project = B"]
        no_sleep.assert_not_awaited()

        assert run.status == "failed"
        assert run.completed_at is not None
        assert "Authentication failed" in run.error_summary
        assert (run.processed_count, run.success_count, run.error_count) == (2, 1, 1)

        details = await load_details(db_session, run)
        assert [d.operation for d in details] == ["created", "authentication_error"]
        assert await find_project(db_session, "A-1") is not None
        assert await find_project(db_session, "C-1") is None
        assert_counters_consistent(run, details)

    async def test_rate_limit_waits_then_succeeds(
        self,
        db_session,
        make_orchestrator,
        mock_tracker_client,
        no_sleep,
        create_query,
        issue_factory,
    ):
        await create_query(query_expression="project = BUSY")
        mock_tracker_client.execute.side_effect = route({
            "project = BUSY": (
                TrackerRateLimitError("Rate limit exceeded", retry_after=7),
                [issue_factory("BUSY-1", summary="Patience")],
            ),
        })

        run = await make_orchestrator(db_session).run(SyncTrigger.SCHEDULED, "system")

        assert [c.args[0] for c in no_sleep.await_args_list] == [7]
        assert (run.processed_count, run.success_count, run.error_count) == (1, 1, 0)

    async def test_rate_limit_exhausted_records_single_error(
        self,
        db_session,
        make_orchestrator,
        mock_tracker_client,
        create_query,
    ):
        await create_query(name="busy", query_expression="project = BUSY")
        mock_tracker_client.execute.side_effect = route({
            "project = BUSY": TrackerRateLimitError("Rate limit exceeded", retry_after=60),
        })

        run = await make_orchestrator(db_session).run(SyncTrigger.SCHEDULED, "system")

        details = await load_details(db_session, run)
        assert [d.operation for d in details] == ["rate_limit_error"]
        assert mock_tracker_client.execute.await_count == 3
        assert run.status == "completed"
        assert (run.processed_count, run.success_count, run.error_count) == (1, 0, 1)

    async def test_client_error_is_query_level(
        self,
        db_session,
        make_orchestrator,
        mock_tracker_client,
        create_query,
        issue_factory,
    ):
        await create_query(name="typo", query_expression="projekt = X", priority=1)
        await create_query(name="good", query_expression="project = X", priority=2)
        mock_tracker_client.execute.side_effect = route({
            "projekt = X": TrackerClientError("Client error 400", status_code=400),
            "project = X": [issue_factory("X-1", summary="Fine")],
        })

        run = await make_orchestrator(db_session).run(SyncTrigger.MANUAL, "alice")

        details = await load_details(db_session, run)
        assert [d.operation for d in details] == ["query_error", "created"]
        assert mock_tracker_client.execute.await_count == 2
        assert run.status == "completed"

    async def test_inactive_queries_are_not_executed(
        self,
        db_session,
        make_orchestrator,
        mock_tracker_client,
        create_query,
    ):
        await create_query(query_expression="project = ON", is_active=True)
        await create_query(query_expression="project = OFF", is_active=False)
        mock_tracker_client.execute.side_effect = route({"project = ON": []})

        run = await make_orchestrator(db_session).run(SyncTrigger.SCHEDULED, "system")

        mock_tracker_client.execute.assert_awaited_once_with("project = ON")
        assert run.status == "completed"
        assert run.processed_count == 0

    async def test_queries_run_by_priority_then_creation_time(
        self,
        db_session,
        make_orchestrator,
        mock_tracker_client,
        create_query,
    ):
        now = utcnow()
        await create_query(query_expression="late", priority=5, created_at=now - timedelta(days=3))
        await create_query(query_expression="second", priority=1, created_at=now - timedelta(days=1))
        await create_query(query_expression="first", priority=1, created_at=now - timedelta(days=2))
        await create_query(query_expression="zero", priority=0, created_at=now)
        mock_tracker_client.execute.side_effect = route({
            "late": [], "second": [], "first": [], "zero": [],
        })

        await make_orchestrator(db_session).run(SyncTrigger.SCHEDULED, "system")

        expressions = [c.args[0] for c in mock_tracker_client.execute.await_args_list]
        assert expressions == ["zero", "first", "second", "late"]

    async def test_invalid_template_skips_query(
        self,
        db_session,
        make_orchestrator,
        mock_tracker_client,
        create_template,
        create_query,
        issue_factory,
    ):
        """A template that does not compile records an error without calling the tracker."""
        broken = await create_template(template_source='{"issueKey": {{ key ')
        await create_query(name="broken", query_expression="project = X", template_id=broken.id, priority=1)
        await create_query(name="fine", query_expression="project = Y", priority=2)
        mock_tracker_client.execute.side_effect = route({
            "project = Y": [issue_factory("Y-1", summary="Fine")],
        })

        run = await make_orchestrator(db_session).run(SyncTrigger.SCHEDULED, "system")

        details = await load_details(db_session, run)
        assert [d.operation for d in details] == ["template_error", "created"]
        assert "broken" in details[0].message
        mock_tracker_client.execute.assert_awaited_once_with("project = Y")

    async def test_render_error_is_item_level(
        self,
        db_session,
        make_orchestrator,
        mock_tracker_client,
        create_template,
        create_query,
    ):
        template = await create_template(
            template_source='{"issueKey": {{ key | json }}, "projectName": "{{ 1 // fields.zero }}"}'
        )
        await create_query(query_expression="project = DIV", template_id=template.id)
        mock_tracker_client.execute.side_effect = route({
            "project = DIV": [{"key": "DIV-1", "fields": {"zero": 0}}],
        })

        run = await make_orchestrator(db_session).run(SyncTrigger.SCHEDULED, "system")

        details = await load_details(db_session, run)
        assert [d.operation for d in details] == ["render_error"]
        assert details[0].message.startswith("DIV-1:")
        assert run.status == "completed"

    async def test_repeated_runs_keep_one_project_per_key(
        self,
        db_session,
        make_orchestrator,
        mock_tracker_client,
        create_query,
        issue_factory,
    ):
        await create_query(query_expression="project = SAME")
        mock_tracker_client.execute.side_effect = route({
            "project = SAME": [issue_factory("SAME-1", summary="Stable")],
        })

        first = await make_orchestrator(db_session).run(SyncTrigger.SCHEDULED, "system")
        second = await make_orchestrator(db_session).run(SyncTrigger.SCHEDULED, "system")

        count = await db_session.execute(
            select(func.count()).select_from(Project).where(Project.issue_key == "SAME-1")
        )
        assert count.scalar_one() == 1
        assert first.id != second.id
        assert [d.operation for d in await load_details(db_session, second)] == ["updated"]

    async def test_unexpected_error_fails_run(
        self,
        db_session,
        make_orchestrator,
        mock_tracker_client,
        create_query,
    ):
        await create_query(query_expression="project = BOOM")
        mock_tracker_client.execute.side_effect = RuntimeError("tracker client bug")

        run = await make_orchestrator(db_session).run(SyncTrigger.MANUAL, "alice")

        assert run.status == "failed"
        assert run.error_summary == "Unexpected error: tracker client bug"
        assert run.processed_count == 0

        stored = await db_session.get(SyncRun, run.id)
        assert stored.status == "failed"

    async def test_no_active_queries_completes_empty_run(
        self,
        db_session,
        make_orchestrator,
        mock_tracker_client,
    ):
        run = await make_orchestrator(db_session).run(SyncTrigger.MANUAL, "alice")

        assert run.status == "completed"
        assert run.processed_count == 0
        assert run.success_rate == 100.0
        mock_tracker_client.execute.assert_not_awaited()
