"""
KnowledgeStore backed by the knowledge_base / knowledge_base_entry tables (SQLAlchemy async).
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Sequence

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.db.models import KnowledgeBase, KnowledgeBaseEntry
from src.llm.errors import ServiceUnavailable

from .store import Passage

logger = logging.getLogger(__name__)


def _to_passage(entry: KnowledgeBaseEntry, kb: KnowledgeBase) -> Passage:
    return Passage(
        id=entry.id,
        knowledge_base_id=kb.id,
        knowledge_base_name=kb.name,
        organization_id=kb.organization_id,
        title=entry.title,
        content=entry.content,
        embedding=[float(x) for x in entry.embedding] if entry.embedding else None,
        tags=list(entry.tags or []),
        source_url=entry.source_url,
        is_active=entry.is_active,
        knowledge_base_active=kb.is_active,
        created_at=entry.created_at,
    )


class SQLKnowledgeStore:
    """Reads active entries of a tenant's active knowledge bases."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    def _base_query(
        self,
        organization_id: str,
        knowledge_base_ids: Optional[Sequence[str]],
    ) -> Any:
        stmt = (
            select(KnowledgeBaseEntry, KnowledgeBase)
            .join(KnowledgeBase, KnowledgeBaseEntry.knowledge_base_id == KnowledgeBase.id)
            .where(
                KnowledgeBase.organization_id == organization_id,
                KnowledgeBase.is_active.is_(True),
                KnowledgeBaseEntry.is_active.is_(True),
            )
        )
        if knowledge_base_ids:
            stmt = stmt.where(KnowledgeBase.id.in_(list(knowledge_base_ids)))
        return stmt

    async def _fetch(self, stmt: Any, limit: Optional[int]) -> List[Passage]:
        stmt = stmt.order_by(KnowledgeBaseEntry.created_at, KnowledgeBaseEntry.id)
        if limit is not None:
            stmt = stmt.limit(limit)
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                rows = result.all()
        except (SQLAlchemyError, OSError) as e:
            logger.error("Knowledge store query failed: %s", e)
            raise ServiceUnavailable(f"knowledge store unavailable: {e}") from e
        return [_to_passage(entry, kb) for entry, kb in rows]

    async def list_passages(
        self,
        organization_id: str,
        knowledge_base_ids: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
    ) -> List[Passage]:
        return await self._fetch(self._base_query(organization_id, knowledge_base_ids), limit)

    async def keyword_search(
        self,
        organization_id: str,
        text: str,
        knowledge_base_ids: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
    ) -> List[Passage]:
        text = (text or "").strip()
        if not text:
            return []
        stmt = self._base_query(organization_id, knowledge_base_ids).where(
            or_(
                KnowledgeBaseEntry.title.icontains(text, autoescape=True),
                KnowledgeBaseEntry.content.icontains(text, autoescape=True),
            )
        )
        return await self._fetch(stmt, limit)
