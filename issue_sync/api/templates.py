"""
Template API endpoints: CRUD plus validation and dry-run rendering.
"""

import json
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from issue_sync.api.deps import get_db, get_engine, verify_password
from issue_sync.models import ResponseTemplate
from issue_sync.repositories import QueryRepository, TemplateRepository
from issue_sync.schemas import (
    MessageResponse,
    TemplateCreate,
    TemplateResponse,
    TemplateTestRequest,
    TemplateTestResponse,
    TemplateUpdate,
    TemplateValidateRequest,
    TemplateValidationResponse,
)
from issue_sync.services import (
    TemplateEngine,
    TemplateRenderError,
    TemplateSyntaxError,
)

router = APIRouter(prefix="/templates", tags=["templates"])


def _ensure_valid(engine: TemplateEngine, source: str) -> None:
    result = engine.validate(source)
    if not result.valid:
        raise HTTPException(status_code=422, detail=result.message)


async def _get_or_404(repo: TemplateRepository, template_id: UUID) -> ResponseTemplate:
    template = await repo.get(template_id)
    if template is None:
        raise HTTPException(status_code=404, detail=f"Template {template_id} not found")
    return template


@router.get("", response_model=List[TemplateResponse])
async def list_templates(
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(verify_password)
):
    """List all templates ordered by name."""
    return await TemplateRepository(db).list_all()


@router.get("/{template_id}", response_model=TemplateResponse)
async def get_template(
    template_id: UUID,
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(verify_password)
):
    return await _get_or_404(TemplateRepository(db), template_id)


@router.post("", response_model=TemplateResponse, status_code=201)
async def create_template(
    payload: TemplateCreate,
    db: AsyncSession = Depends(get_db),
    engine: TemplateEngine = Depends(get_engine),
    _: bool = Depends(verify_password)
):
    """
    Create a template.

    Raises:
        HTTPException: 409 on a duplicate name, 422 if the source does not compile
    """
    repo = TemplateRepository(db)
    if await repo.find_by_name(payload.name):
        raise HTTPException(status_code=409, detail=f"Template '{payload.name}' already exists")
    _ensure_valid(engine, payload.template_source)

    template = ResponseTemplate(**payload.model_dump())
    await repo.save(template)
    await db.refresh(template)
    return template


@router.put("/{template_id}", response_model=TemplateResponse)
async def update_template(
    template_id: UUID,
    payload: TemplateUpdate,
    db: AsyncSession = Depends(get_db),
    engine: TemplateEngine = Depends(get_engine),
    _: bool = Depends(verify_password)
):
    """
    Update a template. Only provided fields are changed.
    """
    repo = TemplateRepository(db)
    template = await _get_or_404(repo, template_id)
    changes = payload.model_dump(exclude_unset=True)

    new_name = changes.get("name")
    if new_name and new_name != template.name:
        if await repo.find_by_name(new_name):
            raise HTTPException(status_code=409, detail=f"Template '{new_name}' already exists")
    if "template_source" in changes:
        _ensure_valid(engine, changes["template_source"])

    for field, value in changes.items():
        setattr(template, field, value)
    await repo.save(template)
    await db.refresh(template)
    return template


@router.delete("/{template_id}", response_model=MessageResponse)
async def delete_template(
    template_id: UUID,
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(verify_password)
):
    """
    Delete a template.

    Raises:
        HTTPException: 409 while a query still uses it
    """
    repo = TemplateRepository(db)
    template = await _get_or_404(repo, template_id)
    in_use = await QueryRepository(db).count_by_template(template_id)
    if in_use:
        raise HTTPException(
            status_code=409,
            detail=f"Template '{template.name}' is used by {in_use} queries"
        )
    await repo.delete(template)
    return MessageResponse(message=f"Template '{template.name}' deleted")


@router.post("/validate", response_model=TemplateValidationResponse)
async def validate_template(
    payload: TemplateValidateRequest,
    engine: TemplateEngine = Depends(get_engine),
    _: bool = Depends(verify_password)
):
    """Syntax-check a template source without rendering it."""
    result = engine.validate(payload.template_source)
    return TemplateValidationResponse(valid=result.valid, message=result.message)


@router.post("/test-render", response_model=TemplateTestResponse)
async def test_render_template(
    payload: TemplateTestRequest,
    engine: TemplateEngine = Depends(get_engine),
    _: bool = Depends(verify_password)
):
    """
    Render a template against sample issue JSON.

    Nothing is stored. The response includes the decoded output when it
    is valid JSON.
    """
    try:
        rendered = engine.test_render(payload.template_source, payload.sample_json)
    except (TemplateSyntaxError, TemplateRenderError) as e:
        return TemplateTestResponse(success=False, error=str(e))

    try:
        parsed = json.loads(rendered)
    except ValueError:
        parsed = None
    return TemplateTestResponse(success=True, rendered=rendered, parsed=parsed)
