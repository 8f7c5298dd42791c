from pydantic import BaseModel, ConfigDict
from typing import List, Optional
from datetime import datetime
from uuid import UUID


class SyncRunResponse(BaseModel):
    """Summary of a sync run."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    trigger_type: str
    status: str
    triggered_by: Optional[str] = None
    started_at: datetime
    completed_at: Optional[datetime] = None
    processed_count: int
    success_count: int
    error_count: int
    error_summary: Optional[str] = None
    duration_seconds: Optional[float] = None
    success_rate: float


class SyncRunDetailResponse(BaseModel):
    """One audit row of a sync run."""
    model_config = ConfigDict(from_attributes=True)

    seq: int
    operation: str
    status: str
    message: Optional[str] = None
    processed_at: datetime


class SyncRunWithDetails(SyncRunResponse):
    """Sync run including its detail rows ordered by sequence."""
    details: List[SyncRunDetailResponse] = []


class SyncStatusResponse(BaseModel):
    """Response for sync status endpoint."""
    scheduler_enabled: bool
    schedule: str
    jobs: List[dict] = []
    in_progress: Optional[SyncRunResponse] = None
    recent_runs: List[SyncRunResponse] = []


class SyncTriggerRequest(BaseModel):
    """Request body for a manual sync."""
    actor: Optional[str] = None


class ConnectionTestResponse(BaseModel):
    """Result of probing the issue tracker."""
    connected: bool
    base_url: str
