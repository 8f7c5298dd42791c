"""
Main API router aggregating all endpoint modules.
"""

from fastapi import APIRouter

from issue_sync.api import queries, sync, templates

# Create main API router with /api prefix
api_router = APIRouter(prefix="/api")

# Include all sub-routers
api_router.include_router(sync.router)
api_router.include_router(queries.router)
api_router.include_router(templates.router)
