"""
Pytest fixtures and configuration for issue sync tests.

This module provides shared fixtures for:
- Test database setup/teardown with async support
- Mock issue tracker client and a no-wait retry policy
- Orchestrator wiring against the test database
- Test authentication headers
- Sample data factories
"""

import pytest
import pytest_asyncio
from datetime import date, timedelta
from typing import AsyncGenerator, Optional
from unittest.mock import AsyncMock, MagicMock
from faker import Faker

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    AsyncEngine,
    create_async_engine,
    async_sessionmaker,
)
from sqlalchemy.pool import NullPool

from issue_sync.config import settings
from issue_sync.database import Base, utcnow
from issue_sync.models import Project, ResponseTemplate, SyncQuery
from issue_sync.repositories import ProjectRepository
from issue_sync.services import (
    IssueTrackerClient,
    ProjectMapper,
    RetryPolicy,
    StatusAliasTable,
    SyncOrchestrator,
    TemplateEngine,
)

# Initialize Faker for generating test data
fake = Faker()

# Renders the tracker's native issue shape into canonical project JSON
CANONICAL_TEMPLATE = """{
  "issueKey": {{ key | json }},
  "projectName": {{ fields.summary | json }},
  "description": {{ fields.description | json }},
  "status": {{ fields.status.name | json }},
  "startDate": {{ fields.customfield_start | json }},
  "endDate": {{ fields.duedate | json }},
  "labels": {{ fields.labels | json }}
}"""

FIXED_TODAY = date(2024, 1, 15)


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """
    Create test database engine backed by a per-test SQLite file.

    A file (rather than :memory:) lets several sessions share one database.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        echo=False,
        poolclass=NullPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker:
    """Session factory bound to the test engine."""
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


# Mock issue tracker fixtures
@pytest.fixture
def mock_tracker_client() -> MagicMock:
    """
    Create mock issue tracker client for testing.

    Returns a MagicMock whose network methods are AsyncMocks.
    """
    mock_client = MagicMock(spec=IssueTrackerClient)

    mock_client.execute = AsyncMock(return_value=[])
    mock_client.search_issues = AsyncMock()
    mock_client.get_issue = AsyncMock()
    mock_client.test_connection = AsyncMock(return_value=True)
    mock_client.close = AsyncMock()
    mock_client.base_url = "https://tracker.test"
    mock_client.is_configured = True

    return mock_client


@pytest.fixture
def no_sleep() -> AsyncMock:
    """Stand-in for asyncio.sleep that records waits instead of sleeping."""
    return AsyncMock()


@pytest.fixture
def retry_policy(no_sleep) -> RetryPolicy:
    """Retry policy with short intervals and no real waiting."""
    return RetryPolicy(
        max_attempts=3,
        initial_interval=1.0,
        max_interval=4.0,
        multiplier=2.0,
        rate_limit_max_waits=2,
        sleep=no_sleep,
    )


@pytest.fixture
def status_aliases() -> StatusAliasTable:
    return StatusAliasTable(settings.status_aliases, default="PLANNING")


@pytest.fixture
def make_orchestrator(mock_tracker_client, retry_policy, status_aliases):
    """
    Factory fixture wiring a SyncOrchestrator to a session.

    Matches the orchestrator_factory signature used by SyncScheduler.
    """
    def _make(db: AsyncSession, client: Optional[IssueTrackerClient] = None) -> SyncOrchestrator:
        mapper = ProjectMapper(
            repository=ProjectRepository(db),
            status_aliases=status_aliases,
            actor="tracker-sync",
            today=lambda: FIXED_TODAY,
        )
        return SyncOrchestrator(
            db=db,
            tracker_client=client or mock_tracker_client,
            retry_policy=retry_policy,
            template_engine=TemplateEngine(),
            project_mapper=mapper,
        )

    return _make


@pytest.fixture
def project_mapper(db_session, status_aliases) -> ProjectMapper:
    return ProjectMapper(
        repository=ProjectRepository(db_session),
        status_aliases=status_aliases,
        actor="tracker-sync",
        today=lambda: FIXED_TODAY,
    )


def make_issue(
    key: str,
    summary: Optional[str] = None,
    status: str = "To Do",
    start: Optional[str] = None,
    due: Optional[str] = None,
    **extra_fields,
) -> dict:
    """Build a raw tracker issue in the search API's shape."""
    fields = {
        "summary": summary,
        "description": fake.sentence(),
        "status": {"name": status},
        "customfield_start": start,
        "duedate": due,
    }
    fields.update(extra_fields)
    return {
        "id": str(fake.random_int(min=10000, max=99999)),
        "key": key,
        "self": f"https://tracker.test/rest/api/2/issue/{key}",
        "fields": fields,
    }


@pytest.fixture
def issue_factory():
    """Factory fixture building raw tracker issues."""
    return make_issue


@pytest.fixture
def canonical_template() -> str:
    return CANONICAL_TEMPLATE


@pytest.fixture
def sample_issue() -> dict:
    return make_issue(
        "PROJ-1",
        summary="Payroll export redesign",
        status="In Progress",
        start="2024-02-01",
        due="2024-06-30",
        labels=["payroll", "q1"],
    )


# Database model factory fixtures
@pytest_asyncio.fixture
async def create_template(db_session: AsyncSession):
    """
    Factory fixture for creating test templates.

    Returns a function that creates and persists a ResponseTemplate.
    """
    async def _create_template(**kwargs) -> ResponseTemplate:
        defaults = {
            "name": f"template-{fake.unique.word()}",
            "template_source": CANONICAL_TEMPLATE,
            "description": fake.sentence(),
        }
        defaults.update(kwargs)

        template = ResponseTemplate(**defaults)
        db_session.add(template)
        await db_session.commit()
        await db_session.refresh(template)
        return template

    return _create_template


@pytest_asyncio.fixture
async def create_query(db_session: AsyncSession, create_template):
    """
    Factory fixture for creating test queries.

    Creates a template too unless template_id is given.
    """
    async def _create_query(**kwargs) -> SyncQuery:
        if "template_id" not in kwargs:
            template = await create_template()
            kwargs["template_id"] = template.id

        defaults = {
            "name": f"query-{fake.unique.word()}",
            "query_expression": f"project = {fake.lexify('???').upper()}",
            "priority": 1,
            "is_active": True,
        }
        defaults.update(kwargs)

        query = SyncQuery(**defaults)
        db_session.add(query)
        await db_session.commit()
        await db_session.refresh(query)
        return query

    return _create_query


@pytest_asyncio.fixture
async def create_project(db_session: AsyncSession):
    """
    Factory fixture for creating test projects.

    Returns a function that creates and persists a Project.
    """
    async def _create_project(**kwargs) -> Project:
        defaults = {
            "issue_key": f"PROJ-{fake.unique.random_int(min=100, max=9999)}",
            "name": fake.catch_phrase(),
            "description": fake.text(max_nb_chars=200),
            "status": "PLANNING",
            "start_date": date(2024, 1, 1),
            "end_date": date(2024, 6, 30),
            "created_by": "tests",
            "created_at": utcnow() - timedelta(days=7),
        }
        defaults.update(kwargs)

        project = Project(**defaults)
        db_session.add(project)
        await db_session.commit()
        await db_session.refresh(project)
        return project

    return _create_project


# Authentication fixtures
@pytest.fixture
def auth_header(monkeypatch) -> dict:
    """Test authentication header for API tests."""
    monkeypatch.setattr(settings, "DASHBOARD_PASSWORD", "test_password")
    return {"X-Dashboard-Password": "test_password"}


@pytest.fixture
def invalid_auth_header(monkeypatch) -> dict:
    """Invalid authentication header for testing auth failures."""
    monkeypatch.setattr(settings, "DASHBOARD_PASSWORD", "test_password")
    return {"X-Dashboard-Password": "wrong_password"}
