"""
Sync API endpoints for running and inspecting issue tracker syncs.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID
import math

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from issue_sync.api.deps import (
    get_db,
    get_sync_scheduler,
    get_tracker_client,
    verify_password,
)
from issue_sync.config import settings
from issue_sync.models import SyncStatus
from issue_sync.repositories import SyncRunRepository
from issue_sync.schemas import (
    ConnectionTestResponse,
    PaginatedResponse,
    SyncRunResponse,
    SyncRunWithDetails,
    SyncStatusResponse,
    SyncTriggerRequest,
)
from issue_sync.services import IssueTrackerClient, SyncAlreadyRunningError
from issue_sync.tasks import SyncScheduler, get_job_status

router = APIRouter(prefix="/sync", tags=["sync"])


@router.post("/run", response_model=SyncRunResponse)
async def run_sync(
    body: Optional[SyncTriggerRequest] = None,
    sync_scheduler: SyncScheduler = Depends(get_sync_scheduler),
    _: bool = Depends(verify_password)
):
    """
    Run a manual sync and wait for it to finish.

    Takes the same lock as the scheduled job, so only one run can be
    active across all instances.

    Returns:
        The finished sync run

    Raises:
        HTTPException: 409 if a sync is already running
    """
    actor = (body.actor if body else None) or "api"
    try:
        run = await sync_scheduler.run_now(actor)
    except SyncAlreadyRunningError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return SyncRunResponse.model_validate(run)


@router.get("/status", response_model=SyncStatusResponse)
async def get_sync_status(
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(verify_password)
):
    """
    Get scheduler state, the in-progress run (if any) and the latest runs.
    """
    runs = SyncRunRepository(db)
    in_progress = await runs.find_in_progress()
    recent = await runs.list_recent(limit=5)
    return SyncStatusResponse(
        scheduler_enabled=settings.SYNC_SCHEDULER_ENABLED,
        schedule=settings.SYNC_SCHEDULE_CRON,
        jobs=get_job_status(),
        in_progress=SyncRunResponse.model_validate(in_progress) if in_progress else None,
        recent_runs=[SyncRunResponse.model_validate(run) for run in recent],
    )


@router.get("/connection", response_model=ConnectionTestResponse)
async def test_connection(
    client: IssueTrackerClient = Depends(get_tracker_client),
    _: bool = Depends(verify_password)
):
    """Probe the issue tracker with the configured credentials."""
    return ConnectionTestResponse(
        connected=await client.test_connection(),
        base_url=client.base_url,
    )


@router.get("/history", response_model=PaginatedResponse[SyncRunResponse])
async def list_sync_history(
    status: Optional[SyncStatus] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(verify_password)
):
    """
    List sync runs, newest first.

    Supports filtering by status and by a started-at date range.
    """
    runs, total = await SyncRunRepository(db).list_page(
        page=page,
        per_page=per_page,
        status=status,
        started_from=start_date,
        started_to=end_date,
    )
    return PaginatedResponse(
        items=[SyncRunResponse.model_validate(run) for run in runs],
        total=total,
        page=page,
        per_page=per_page,
        pages=math.ceil(total / per_page) if total > 0 else 0,
    )


@router.get("/history/{run_id}", response_model=SyncRunWithDetails)
async def get_sync_run(
    run_id: UUID,
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(verify_password)
):
    """
    Get a sync run with its detail rows ordered by sequence.

    Raises:
        HTTPException: 404 if the run does not exist
    """
    run = await SyncRunRepository(db).get_with_details(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail=f"Sync run {run_id} not found")
    return SyncRunWithDetails.model_validate(run)
