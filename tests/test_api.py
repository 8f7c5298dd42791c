"""
Tests for API endpoints.

Tests cover:
- Authentication
- Template CRUD, validation and test rendering
- Query CRUD and activation
- Manual sync, status and history
"""

import json
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select

from issue_sync.api.deps import get_db
from issue_sync.main import app
from issue_sync.models import Project, SyncRun, SyncRunDetail
from issue_sync.services import LockProvider, SyncAlreadyRunningError, TemplateEngine
from issue_sync.tasks import SyncScheduler


@pytest_asyncio.fixture
async def client(session_factory, mock_tracker_client, make_orchestrator):
    """
    HTTP client bound to the app, with the database and shared services
    pointed at the test fixtures.
    """
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.state.tracker_client = mock_tracker_client
    app.state.template_engine = TemplateEngine()
    app.state.sync_scheduler = SyncScheduler(
        session_factory=session_factory,
        lock_provider=LockProvider(session_factory, owner="api-tests"),
        tracker_client=mock_tracker_client,
        lock_name="api-tests.sync",
        lock_at_most_for=timedelta(minutes=10),
        lock_at_least_for=timedelta(0),
        orchestrator_factory=make_orchestrator,
    )

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


async def count_rows(session_factory, model) -> int:
    async with session_factory() as db:
        result = await db.execute(select(func.count()).select_from(model))
        return result.scalar_one()


@pytest.mark.asyncio
@pytest.mark.api
class TestHealthAndAuth:

    async def test_health_needs_no_auth(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    async def test_wrong_password_rejected(self, client, invalid_auth_header):
        response = await client.get("/api/templates", headers=invalid_auth_header)
        assert response.status_code == 401

    async def test_missing_password_header_rejected(self, client):
        response = await client.get("/api/templates")
        assert response.status_code == 422

    async def test_unconfigured_password_rejects_everyone(self, client, monkeypatch):
        from issue_sync.config import settings

        monkeypatch.setattr(settings, "DASHBOARD_PASSWORD", "")
        response = await client.get("/api/templates", headers={"X-Dashboard-Password": ""})
        assert response.status_code == 401


@pytest.mark.asyncio
@pytest.mark.api
class TestTemplateEndpoints:

    async def test_create_and_get_template(self, client, auth_header, canonical_template):
        response = await client.post(
            "/api/templates",
            json={"name": "default", "template_source": canonical_template},
            headers=auth_header,
        )

        assert response.status_code == 201
        created = response.json()
        assert created["name"] == "default"

        response = await client.get(f"/api/templates/{created['id']}", headers=auth_header)
        assert response.status_code == 200
        assert response.json()["template_source"] == canonical_template

    async def test_create_rejects_invalid_source(self, client, auth_header):
        response = await client.post(
            "/api/templates",
            json={"name": "broken", "template_source": "{{ key "},
            headers=auth_header,
        )

        assert response.status_code == 422
        assert "line 1" in response.json()["detail"]

    async def test_create_rejects_duplicate_name(self, client, auth_header, create_template):
        await create_template(name="taken")

        response = await client.post(
            "/api/templates",
            json={"name": "taken", "template_source": "{{ key }}"},
            headers=auth_header,
        )
        assert response.status_code == 409

    async def test_update_template(self, client, auth_header, create_template):
        template = await create_template(name="old")

        response = await client.put(
            f"/api/templates/{template.id}",
            json={"name": "new", "description": "renamed"},
            headers=auth_header,
        )

        assert response.status_code == 200
        assert response.json()["name"] == "new"
        assert response.json()["template_source"] == template.template_source

    async def test_delete_template_in_use_conflicts(self, client, auth_header, create_query):
        query = await create_query()

        response = await client.delete(f"/api/templates/{query.template_id}", headers=auth_header)
        assert response.status_code == 409

    async def test_delete_unused_template(self, client, auth_header, create_template):
        template = await create_template()

        response = await client.delete(f"/api/templates/{template.id}", headers=auth_header)
        assert response.status_code == 200

        response = await client.get(f"/api/templates/{template.id}", headers=auth_header)
        assert response.status_code == 404

    async def test_validate(self, client, auth_header):
        ok = await client.post(
            "/api/templates/validate",
            json={"template_source": "{{ key | upper }}"},
            headers=auth_header,
        )
        bad = await client.post(
            "/api/templates/validate",
            json={"template_source": "{% for x in items %}"},
            headers=auth_header,
        )

        assert ok.json() == {"valid": True, "message": "Template syntax is valid"}
        assert bad.json()["valid"] is False

    async def test_test_render_returns_parsed_output_and_stores_nothing(
        self,
        client,
        auth_header,
        session_factory,
        canonical_template,
        sample_issue,
    ):
        response = await client.post(
            "/api/templates/test-render",
            json={"template_source": canonical_template, "sample_json": json.dumps(sample_issue)},
            headers=auth_header,
        )

        body = response.json()
        assert response.status_code == 200
        assert body["success"] is True
        assert body["parsed"]["issueKey"] == "PROJ-1"
        assert json.loads(body["rendered"]) == body["parsed"]

        assert await count_rows(session_factory, Project) == 0
        assert await count_rows(session_factory, SyncRun) == 0
        assert await count_rows(session_factory, SyncRunDetail) == 0

    async def test_test_render_reports_errors(self, client, auth_header, canonical_template):
        response = await client.post(
            "/api/templates/test-render",
            json={"template_source": canonical_template, "sample_json": "{oops"},
            headers=auth_header,
        )

        body = response.json()
        assert body["success"] is False
        assert "not valid JSON" in body["error"]
        assert body["rendered"] is None


@pytest.mark.asyncio
@pytest.mark.api
class TestQueryEndpoints:

    async def test_create_query(self, client, auth_header, create_template):
        template = await create_template()

        response = await client.post(
            "/api/queries",
            json={
                "name": "open projects",
                "query_expression": "project = PROJ AND status != Done",
                "template_id": str(template.id),
                "priority": 2,
            },
            headers=auth_header,
        )

        assert response.status_code == 201
        body = response.json()
        assert body["priority"] == 2
        assert body["is_active"] is True

    async def test_create_query_with_unknown_template(self, client, auth_header):
        response = await client.post(
            "/api/queries",
            json={"name": "orphan", "query_expression": "x", "template_id": str(uuid4())},
            headers=auth_header,
        )
        assert response.status_code == 404

    async def test_create_query_rejects_negative_priority(self, client, auth_header, create_template):
        template = await create_template()

        response = await client.post(
            "/api/queries",
            json={
                "name": "negative",
                "query_expression": "x",
                "template_id": str(template.id),
                "priority": -1,
            },
            headers=auth_header,
        )
        assert response.status_code == 422

    async def test_list_queries_in_execution_order(self, client, auth_header, create_query):
        await create_query(name="low", priority=9)
        await create_query(name="high", priority=0)
        await create_query(name="off", priority=1, is_active=False)

        all_queries = await client.get("/api/queries", headers=auth_header)
        active = await client.get("/api/queries?active_only=true", headers=auth_header)

        assert [q["name"] for q in all_queries.json()] == ["high", "off", "low"]
        assert [q["name"] for q in active.json()] == ["high", "low"]

    async def test_deactivate_and_activate(self, client, auth_header, create_query):
        query = await create_query()

        response = await client.post(f"/api/queries/{query.id}/deactivate", headers=auth_header)
        assert response.json()["is_active"] is False

        response = await client.post(f"/api/queries/{query.id}/activate", headers=auth_header)
        assert response.json()["is_active"] is True

    async def test_update_and_delete_query(self, client, auth_header, create_query):
        query = await create_query(priority=1)

        response = await client.put(
            f"/api/queries/{query.id}",
            json={"priority": 4},
            headers=auth_header,
        )
        assert response.json()["priority"] == 4

        response = await client.delete(f"/api/queries/{query.id}", headers=auth_header)
        assert response.status_code == 200

        response = await client.get(f"/api/queries/{query.id}", headers=auth_header)
        assert response.status_code == 404


@pytest.mark.asyncio
@pytest.mark.api
class TestSyncEndpoints:

    async def test_manual_run_and_history(
        self,
        client,
        auth_header,
        mock_tracker_client,
        create_query,
        issue_factory,
    ):
        """A manual run is recorded and visible in the history endpoints."""
        await create_query(query_expression="project = API")
        mock_tracker_client.execute.return_value = [
            issue_factory("API-1", summary="First"),
            issue_factory("API-2", summary=None),
        ]

        response = await client.post(
            "/api/sync/run",
            json={"actor": "alice"},
            headers=auth_header,
        )

        assert response.status_code == 200
        run = response.json()
        assert run["status"] == "completed"
        assert run["trigger_type"] == "manual"
        assert run["triggered_by"] == "alice"
        assert (run["processed_count"], run["success_count"], run["error_count"]) == (2, 1, 1)
        assert run["success_rate"] == 50.0

        history = await client.get("/api/sync/history", headers=auth_header)
        assert history.json()["total"] == 1
        assert history.json()["items"][0]["id"] == run["id"]

        detail = await client.get(f"/api/sync/history/{run['id']}", headers=auth_header)
        details = detail.json()["details"]
        assert [d["seq"] for d in details] == [1, 2]
        assert [d["operation"] for d in details] == ["created", "mapping_error"]

    async def test_manual_run_defaults_actor(self, client, auth_header):
        response = await client.post("/api/sync/run", headers=auth_header)

        assert response.status_code == 200
        assert response.json()["triggered_by"] == "api"

    async def test_manual_run_conflicts_with_running_sync(self, client, auth_header):
        busy = MagicMock(spec=SyncScheduler)
        busy.run_now = AsyncMock(side_effect=SyncAlreadyRunningError("A sync run is already in progress"))
        app.state.sync_scheduler = busy

        response = await client.post("/api/sync/run", headers=auth_header)

        assert response.status_code == 409
        assert "already in progress" in response.json()["detail"]

    async def test_history_filters_and_pagination(self, client, auth_header, session_factory):
        for _ in range(3):
            await client.post("/api/sync/run", headers=auth_header)

        page = await client.get("/api/sync/history?per_page=2&page=2", headers=auth_header)
        failed = await client.get("/api/sync/history?status=failed", headers=auth_header)

        assert page.json()["total"] == 3
        assert page.json()["pages"] == 2
        assert len(page.json()["items"]) == 1
        assert failed.json()["total"] == 0

    async def test_history_unknown_run(self, client, auth_header):
        response = await client.get(f"/api/sync/history/{uuid4()}", headers=auth_header)
        assert response.status_code == 404

    async def test_status(self, client, auth_header):
        await client.post("/api/sync/run", headers=auth_header)

        response = await client.get("/api/sync/status", headers=auth_header)

        body = response.json()
        assert response.status_code == 200
        assert body["in_progress"] is None
        assert len(body["recent_runs"]) == 1
        assert "schedule" in body

    async def test_connection(self, client, auth_header, mock_tracker_client):
        mock_tracker_client.test_connection.return_value = False

        response = await client.get("/api/sync/connection", headers=auth_header)

        assert response.json() == {"connected": False, "base_url": "https://tracker.test"}
