from issue_sync.schemas.common import PaginatedResponse, MessageResponse, HealthResponse
from issue_sync.schemas.canonical import CanonicalProject
from issue_sync.schemas.query import QueryCreate, QueryUpdate, QueryResponse
from issue_sync.schemas.template import (
    TemplateCreate, TemplateUpdate, TemplateResponse,
    TemplateValidateRequest, TemplateValidationResponse,
    TemplateTestRequest, TemplateTestResponse
)
from issue_sync.schemas.sync import (
    SyncRunResponse, SyncRunDetailResponse, SyncRunWithDetails,
    SyncStatusResponse, SyncTriggerRequest, ConnectionTestResponse
)

__all__ = [
    # Common
    "PaginatedResponse",
    "MessageResponse",
    "HealthResponse",
    # Canonical
    "CanonicalProject",
    # Query
    "QueryCreate",
    "QueryUpdate",
    "QueryResponse",
    # Template
    "TemplateCreate",
    "TemplateUpdate",
    "TemplateResponse",
    "TemplateValidateRequest",
    "TemplateValidationResponse",
    "TemplateTestRequest",
    "TemplateTestResponse",
    # Sync
    "SyncRunResponse",
    "SyncRunDetailResponse",
    "SyncRunWithDetails",
    "SyncStatusResponse",
    "SyncTriggerRequest",
    "ConnectionTestResponse",
]
