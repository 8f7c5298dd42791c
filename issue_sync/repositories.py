"""
Data access for the sync service.

Thin async wrappers around SQLAlchemy queries, one per aggregate. They
flush but never commit; transaction boundaries belong to the caller.
"""

from datetime import datetime
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from issue_sync.models import (
    Project,
    ResponseTemplate,
    SyncQuery,
    SyncRun,
    SyncRunDetail,
    SyncStatus,
)


class QueryRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_active(self) -> List[SyncQuery]:
        """Active queries, highest precedence (lowest priority value) first."""
        result = await self.db.execute(
            select(SyncQuery)
            .where(SyncQuery.is_active.is_(True))
            .order_by(SyncQuery.priority.asc(), SyncQuery.created_at.asc())
        )
        return list(result.scalars().all())

    async def list_all(self) -> List[SyncQuery]:
        result = await self.db.execute(
            select(SyncQuery).order_by(SyncQuery.priority.asc(), SyncQuery.created_at.asc())
        )
        return list(result.scalars().all())

    async def get(self, query_id: UUID) -> Optional[SyncQuery]:
        return await self.db.get(SyncQuery, query_id)

    async def find_by_name(self, name: str) -> Optional[SyncQuery]:
        result = await self.db.execute(select(SyncQuery).where(SyncQuery.name == name))
        return result.scalar_one_or_none()

    async def count_by_template(self, template_id: UUID) -> int:
        result = await self.db.execute(
            select(func.count()).select_from(SyncQuery).where(SyncQuery.template_id == template_id)
        )
        return result.scalar_one()

    async def save(self, query: SyncQuery) -> SyncQuery:
        self.db.add(query)
        await self.db.flush()
        return query

    async def delete(self, query: SyncQuery) -> None:
        await self.db.delete(query)
        await self.db.flush()


class TemplateRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, template_id: UUID) -> Optional[ResponseTemplate]:
        return await self.db.get(ResponseTemplate, template_id)

    async def list_all(self) -> List[ResponseTemplate]:
        result = await self.db.execute(select(ResponseTemplate).order_by(ResponseTemplate.name))
        return list(result.scalars().all())

    async def find_by_name(self, name: str) -> Optional[ResponseTemplate]:
        result = await self.db.execute(
            select(ResponseTemplate).where(ResponseTemplate.name == name)
        )
        return result.scalar_one_or_none()

    async def save(self, template: ResponseTemplate) -> ResponseTemplate:
        self.db.add(template)
        await self.db.flush()
        return template

    async def delete(self, template: ResponseTemplate) -> None:
        await self.db.delete(template)
        await self.db.flush()


class ProjectRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_by_issue_key(self, issue_key: str) -> Optional[Project]:
        result = await self.db.execute(select(Project).where(Project.issue_key == issue_key))
        return result.scalar_one_or_none()

    async def save(self, project: Project) -> Project:
        """Insert or update; the unique issue_key column backs the one-row-per-key rule."""
        self.db.add(project)
        await self.db.flush()
        return project


class SyncRunRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def add(self, run: SyncRun) -> SyncRun:
        self.db.add(run)
        await self.db.flush()
        return run

    async def add_detail(self, detail: SyncRunDetail) -> SyncRunDetail:
        self.db.add(detail)
        await self.db.flush()
        return detail

    async def get(self, run_id: UUID) -> Optional[SyncRun]:
        return await self.db.get(SyncRun, run_id)

    async def get_with_details(self, run_id: UUID) -> Optional[SyncRun]:
        result = await self.db.execute(
            select(SyncRun)
            .where(SyncRun.id == run_id)
            .options(selectinload(SyncRun.details))
        )
        return result.scalar_one_or_none()

    async def find_in_progress(self) -> Optional[SyncRun]:
        result = await self.db.execute(
            select(SyncRun)
            .where(SyncRun.status == SyncStatus.IN_PROGRESS.value)
            .order_by(SyncRun.started_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_recent(self, limit: int = 10) -> List[SyncRun]:
        result = await self.db.execute(
            select(SyncRun).order_by(SyncRun.started_at.desc()).limit(limit)
        )
        return list(result.scalars().all())

    async def list_page(
        self,
        page: int = 1,
        per_page: int = 20,
        status: Optional[SyncStatus] = None,
        started_from: Optional[datetime] = None,
        started_to: Optional[datetime] = None,
    ) -> Tuple[List[SyncRun], int]:
        """
        Page through runs, newest first.

        Returns:
            Tuple of (runs on the page, total matching runs)
        """
        conditions = []
        if status is not None:
            conditions.append(SyncRun.status == status.value)
        if started_from is not None:
            conditions.append(SyncRun.started_at >= started_from)
        if started_to is not None:
            conditions.append(SyncRun.started_at <= started_to)

        count_result = await self.db.execute(
            select(func.count()).select_from(SyncRun).where(*conditions)
        )
        total = count_result.scalar_one()

        result = await self.db.execute(
            select(SyncRun)
            .where(*conditions)
            .order_by(SyncRun.started_at.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
        )
        return list(result.scalars().all()), total
