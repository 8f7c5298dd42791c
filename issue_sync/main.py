"""
Issue Sync API - Main FastAPI Application
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from issue_sync.config import settings
from issue_sync.database import close_db
from issue_sync.schemas import HealthResponse
from issue_sync.services import get_template_engine, get_tracker_client
from issue_sync.tasks import get_sync_scheduler, setup_scheduler, shutdown_scheduler

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

SERVICE_VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Lifespan context manager for startup and shutdown events.

    Handles:
    - Shared tracker client, template engine and sync scheduler creation
    - Background scheduler startup and shutdown
    - Tracker client and database connection cleanup
    """
    # Startup
    logger.info("Starting up Issue Sync API...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Issue tracker: {settings.TRACKER_BASE_URL}")

    tracker_client = get_tracker_client()
    if not tracker_client.is_configured:
        logger.warning("TRACKER_API_TOKEN is not set; sync runs will fail authentication")

    app.state.tracker_client = tracker_client
    app.state.template_engine = get_template_engine()
    app.state.sync_scheduler = get_sync_scheduler(tracker_client)

    setup_scheduler(app.state.sync_scheduler)
    logger.info("Startup complete")

    yield

    # Shutdown
    logger.info("Shutting down Issue Sync API...")
    shutdown_scheduler()
    await tracker_client.close()
    await close_db()
    logger.info("Shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Issue Sync API",
    description="Synchronizes issue tracker search results into local project records",
    version=SERVICE_VERSION,
    lifespan=lifespan,
)

cors_origins = settings.cors_origins_list

# Warn if using wildcard CORS in production
if settings.ENVIRONMENT == "production" and "*" in cors_origins:
    logger.warning(
        "WARNING: CORS is set to allow all origins (*) in production. "
        "Set CORS_ORIGINS to specific origins."
    )

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "X-Dashboard-Password"],
    max_age=600,  # Cache preflight requests for 10 minutes
)


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Health check endpoint.

    Returns:
        HealthResponse: Health status
    """
    return HealthResponse(
        status="healthy",
        service="issue-sync-api",
        version=SERVICE_VERSION,
    )


# Include API routers
from issue_sync.api.router import api_router

app.include_router(api_router)
