from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Optional
from datetime import datetime
from uuid import UUID


class TemplateBase(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    template_source: str = Field(min_length=1)
    description: Optional[str] = None


class TemplateCreate(TemplateBase):
    pass


class TemplateUpdate(BaseModel):
    """Partial update; omitted fields are left unchanged."""
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    template_source: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None


class TemplateResponse(TemplateBase):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    created_at: datetime
    updated_at: datetime


class TemplateValidateRequest(BaseModel):
    template_source: str


class TemplateValidationResponse(BaseModel):
    valid: bool
    message: str


class TemplateTestRequest(BaseModel):
    """Template source plus sample issue JSON (as text) to render it against."""
    template_source: str
    sample_json: str


class TemplateTestResponse(BaseModel):
    success: bool
    rendered: Optional[str] = None
    parsed: Optional[Any] = None
    error: Optional[str] = None
