"""
Query API endpoints for managing the tracker searches run on each sync.
"""

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from issue_sync.api.deps import get_db, verify_password
from issue_sync.models import SyncQuery
from issue_sync.repositories import QueryRepository, TemplateRepository
from issue_sync.schemas import MessageResponse, QueryCreate, QueryResponse, QueryUpdate

router = APIRouter(prefix="/queries", tags=["queries"])


async def _get_or_404(repo: QueryRepository, query_id: UUID) -> SyncQuery:
    query = await repo.get(query_id)
    if query is None:
        raise HTTPException(status_code=404, detail=f"Query {query_id} not found")
    return query


async def _ensure_template_exists(db: AsyncSession, template_id: UUID) -> None:
    if await TemplateRepository(db).get(template_id) is None:
        raise HTTPException(status_code=404, detail=f"Template {template_id} not found")


@router.get("", response_model=List[QueryResponse])
async def list_queries(
    active_only: bool = False,
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(verify_password)
):
    """List queries in execution order (priority, then creation time)."""
    repo = QueryRepository(db)
    return await (repo.list_active() if active_only else repo.list_all())


@router.get("/{query_id}", response_model=QueryResponse)
async def get_query(
    query_id: UUID,
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(verify_password)
):
    return await _get_or_404(QueryRepository(db), query_id)


@router.post("", response_model=QueryResponse, status_code=201)
async def create_query(
    payload: QueryCreate,
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(verify_password)
):
    """
    Create a query.

    Raises:
        HTTPException: 409 on a duplicate name, 404 if the template does not exist
    """
    repo = QueryRepository(db)
    if await repo.find_by_name(payload.name):
        raise HTTPException(status_code=409, detail=f"Query '{payload.name}' already exists")
    await _ensure_template_exists(db, payload.template_id)

    query = SyncQuery(**payload.model_dump())
    await repo.save(query)
    await db.refresh(query)
    return query


@router.put("/{query_id}", response_model=QueryResponse)
async def update_query(
    query_id: UUID,
    payload: QueryUpdate,
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(verify_password)
):
    """Update a query. Only provided fields are changed."""
    repo = QueryRepository(db)
    query = await _get_or_404(repo, query_id)
    changes = payload.model_dump(exclude_unset=True)

    new_name = changes.get("name")
    if new_name and new_name != query.name:
        if await repo.find_by_name(new_name):
            raise HTTPException(status_code=409, detail=f"Query '{new_name}' already exists")
    if changes.get("template_id"):
        await _ensure_template_exists(db, changes["template_id"])

    for field, value in changes.items():
        setattr(query, field, value)
    await repo.save(query)
    await db.refresh(query)
    return query


@router.post("/{query_id}/activate", response_model=QueryResponse)
async def activate_query(
    query_id: UUID,
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(verify_password)
):
    repo = QueryRepository(db)
    query = await _get_or_404(repo, query_id)
    query.activate()
    await repo.save(query)
    await db.refresh(query)
    return query


@router.post("/{query_id}/deactivate", response_model=QueryResponse)
async def deactivate_query(
    query_id: UUID,
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(verify_password)
):
    repo = QueryRepository(db)
    query = await _get_or_404(repo, query_id)
    query.deactivate()
    await repo.save(query)
    await db.refresh(query)
    return query


@router.delete("/{query_id}", response_model=MessageResponse)
async def delete_query(
    query_id: UUID,
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(verify_password)
):
    repo = QueryRepository(db)
    query = await _get_or_404(repo, query_id)
    await repo.delete(query)
    return MessageResponse(message=f"Query '{query.name}' deleted")
