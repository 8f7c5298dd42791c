from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from datetime import datetime
from uuid import UUID


class QueryBase(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    query_expression: str = Field(min_length=1)
    template_id: UUID
    priority: int = Field(default=0, ge=0)
    is_active: bool = True
    description: Optional[str] = None


class QueryCreate(QueryBase):
    pass


class QueryUpdate(BaseModel):
    """Partial update; omitted fields are left unchanged."""
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    query_expression: Optional[str] = Field(default=None, min_length=1)
    template_id: Optional[UUID] = None
    priority: Optional[int] = Field(default=None, ge=0)
    is_active: Optional[bool] = None
    description: Optional[str] = None


class QueryResponse(QueryBase):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    created_at: datetime
    updated_at: datetime
