"""
Knowledge store contract and an in-memory implementation backed by JSONL passages.
"""

from __future__ import annotations

import dataclasses
import datetime as dt
import json
from pathlib import Path
from typing import Iterable, List, Optional, Protocol, Sequence


@dataclasses.dataclass
class Passage:
    """One searchable passage (knowledge-base entry) belonging to a tenant."""

    id: str
    knowledge_base_id: str
    knowledge_base_name: str
    organization_id: str
    title: str
    content: str
    embedding: Optional[List[float]] = None
    tags: List[str] = dataclasses.field(default_factory=list)
    source_url: Optional[str] = None
    is_active: bool = True
    knowledge_base_active: bool = True
    created_at: Optional[dt.datetime] = None


class KnowledgeStore(Protocol):
    """Query contract the retriever needs from a knowledge store."""

    async def list_passages(
        self,
        organization_id: str,
        knowledge_base_ids: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
    ) -> List[Passage]:
        """Active passages of the tenant's active knowledge bases, in stable order."""
        ...

    async def keyword_search(
        self,
        organization_id: str,
        text: str,
        knowledge_base_ids: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
    ) -> List[Passage]:
        """Active passages whose title or content contains text (case-insensitive)."""
        ...


class InMemoryKnowledgeStore:
    """KnowledgeStore over a Python list; insertion order is the stable order."""

    def __init__(self, passages: Optional[Iterable[Passage]] = None):
        self._passages: List[Passage] = list(passages or [])

    def add_passage(self, passage: Passage) -> None:
        self._passages.append(passage)

    def __len__(self) -> int:
        return len(self._passages)

    def _visible(
        self,
        organization_id: str,
        knowledge_base_ids: Optional[Sequence[str]],
    ) -> Iterable[Passage]:
        allowed = set(knowledge_base_ids) if knowledge_base_ids else None
        for p in self._passages:
            if p.organization_id != organization_id:
                continue
            if not (p.is_active and p.knowledge_base_active):
                continue
            if allowed is not None and p.knowledge_base_id not in allowed:
                continue
            yield p

    async def list_passages(
        self,
        organization_id: str,
        knowledge_base_ids: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
    ) -> List[Passage]:
        out = list(self._visible(organization_id, knowledge_base_ids))
        return out[:limit] if limit is not None else out

    async def keyword_search(
        self,
        organization_id: str,
        text: str,
        knowledge_base_ids: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
    ) -> List[Passage]:
        needle = (text or "").strip().lower()
        if not needle:
            return []
        out = [
            p
            for p in self._visible(organization_id, knowledge_base_ids)
            if needle in p.title.lower() or needle in p.content.lower()
        ]
        return out[:limit] if limit is not None else out

    @classmethod
    def from_jsonl(cls, path: Path, organization_id: Optional[str] = None) -> "InMemoryKnowledgeStore":
        """Load passages from a JSONL file; organization_id fills rows that omit it."""
        return cls(load_passages(path, organization_id=organization_id))


def load_passages(path: Path, organization_id: Optional[str] = None) -> List[Passage]:
    """Load passages from a JSONL file (one passage object per line)."""
    if not path.exists():
        raise FileNotFoundError(f"passages file not found at {path}")

    passages: List[Passage] = []
    with path.open("r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            obj = json.loads(line)
            created = obj.get("created_at")
            passages.append(
                Passage(
                    id=obj["id"],
                    knowledge_base_id=obj["knowledge_base_id"],
                    knowledge_base_name=obj.get("knowledge_base_name", obj["knowledge_base_id"]),
                    organization_id=obj.get("organization_id") or organization_id or "",
                    title=obj.get("title", ""),
                    content=obj["content"],
                    embedding=list(obj["embedding"]) if obj.get("embedding") is not None else None,
                    tags=list(obj.get("tags") or []),
                    source_url=obj.get("source_url"),
                    is_active=bool(obj.get("is_active", True)),
                    knowledge_base_active=bool(obj.get("knowledge_base_active", True)),
                    created_at=dt.datetime.fromisoformat(created) if created else None,
                )
            )
    return passages
