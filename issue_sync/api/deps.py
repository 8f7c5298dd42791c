"""
API dependency functions for database sessions, authentication and shared services.
"""

from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi import Header, HTTPException, Request, status
import secrets

from issue_sync.database import AsyncSessionLocal
from issue_sync.config import settings
from issue_sync.services import IssueTrackerClient, TemplateEngine
from issue_sync.tasks import SyncScheduler


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Database session dependency.

    Yields an async database session that automatically commits on success
    and rolls back on error.

    Yields:
        AsyncSession: Database session for the request
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def verify_password(
    x_dashboard_password: str = Header(..., alias="X-Dashboard-Password")
) -> bool:
    """
    Simple password authentication for the API.

    Verifies the dashboard password from the X-Dashboard-Password header
    using constant-time comparison to prevent timing attacks.

    Raises:
        HTTPException: 401 if password is invalid or none is configured
    """
    expected = settings.DASHBOARD_PASSWORD
    if not expected or not secrets.compare_digest(x_dashboard_password, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid dashboard password"
        )
    return True


def get_tracker_client(request: Request) -> IssueTrackerClient:
    """Shared issue tracker client created at startup."""
    return request.app.state.tracker_client


def get_sync_scheduler(request: Request) -> SyncScheduler:
    """Shared sync scheduler created at startup."""
    return request.app.state.sync_scheduler


def get_engine(request: Request) -> TemplateEngine:
    """Shared template engine created at startup."""
    return request.app.state.template_engine
