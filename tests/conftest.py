"""
Shared fakes: a scripted completion client and a lookup-table embedding service.
"""

from __future__ import annotations

import json
from typing import Dict, List, Optional, Sequence, Union

import pytest

from src.llm.client import Completion, TokenUsage
from src.rag.store import InMemoryKnowledgeStore, Passage

# Prompt marker -> route name, checked in order
ROUTES = [
    ("query analyzer", "analysis"),
    ("Rerank these documents", "rerank"),
    ("Evaluate the relevance", "relevance"),
    ("Validate this AI response", "validation"),
    ("semantically similar variations", "expansion"),
]

Scripted = Union[str, BaseException]


class FakeCompletionClient:
    """
    Returns scripted replies per prompt kind; exceptions in a script are raised.

    A route's last reply is reused once its script runs out. Unscripted routes
    return an empty string.
    """

    def __init__(self, **scripts: Union[Scripted, Sequence[Scripted]]):
        self._scripts: Dict[str, List[Scripted]] = {}
        for route, replies in scripts.items():
            if isinstance(replies, (str, BaseException)):
                replies = [replies]
            self._scripts[route] = list(replies)
        self.calls: List[dict] = []

    @staticmethod
    def route_for(system_prompt: Optional[str], messages: List[dict]) -> str:
        prompt = messages[-1]["content"] if messages else ""
        for marker, route in ROUTES:
            if marker in prompt:
                return route
        return "answer"

    def count(self, route: str) -> int:
        return sum(1 for c in self.calls if c["route"] == route)

    async def complete(
        self,
        system_prompt: Optional[str],
        messages: List[dict],
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> Completion:
        route = self.route_for(system_prompt, messages)
        self.calls.append(
            {
                "route": route,
                "system_prompt": system_prompt,
                "messages": list(messages),
                "temperature": temperature,
                "max_tokens": max_tokens,
            }
        )
        script = self._scripts.get(route)
        if not script:
            return Completion(text="")
        reply = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(reply, BaseException):
            raise reply
        return Completion(text=reply, usage=TokenUsage(prompt_tokens=10, completion_tokens=5, total_tokens=15))


class FakeEmbeddingService:
    """Looks texts up in a table; unknown texts get the default vector."""

    def __init__(self, vectors: Optional[Dict[str, List[float]]] = None, default: Optional[List[float]] = None):
        self.vectors = dict(vectors or {})
        self.default = default or [0.0, 0.0, 1.0]
        self.calls: List[str] = []

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        return list(self.vectors.get(text, self.default))


def analysis_json(
    should_retrieve: bool = True,
    strategy: str = "semantic",
    confidence: float = 0.9,
    expansions: Optional[List[str]] = None,
) -> str:
    return json.dumps(
        {
            "shouldRetrieve": should_retrieve,
            "strategy": strategy,
            "reasoning": "test decision",
            "confidence": confidence,
            "queryExpansions": expansions or [],
        }
    )


def relevance_json(flags: List[bool], quality: float = 0.9, more: bool = False) -> str:
    return json.dumps(
        {"isRelevant": flags, "overallQuality": quality, "shouldRetrieveMore": more, "feedback": "ok"}
    )


def validation_json(accurate: bool = True, confidence: float = 0.8, issues: Optional[List[str]] = None) -> str:
    return json.dumps({"isFactuallyAccurate": accurate, "confidence": confidence, "issues": issues or []})


def make_passage(
    pid: str,
    embedding: Optional[List[float]],
    content: str = "",
    title: str = "",
    kb: str = "kb_1",
    org: str = "org_1",
    **kwargs,
) -> Passage:
    return Passage(
        id=pid,
        knowledge_base_id=kb,
        knowledge_base_name=f"{kb} name",
        organization_id=org,
        title=title or f"Title {pid}",
        content=content or f"Content of passage {pid}.",
        embedding=embedding,
        **kwargs,
    )


@pytest.fixture
def passages() -> List[Passage]:
    """Four passages in kb_1 and one in kb_2, scored against the query vector [1, 0, 0]."""
    return [
        make_passage("p1", [1.0, 0.0, 0.0], content="Returns are accepted within 30 days.", title="Return policy"),
        make_passage("p2", [0.9, 0.1, 0.0], content="Refunds go back to the original payment method."),
        make_passage("p3", [0.7, 0.7, 0.0], content="Shipping takes three to five business days."),
        make_passage("p4", [0.0, 1.0, 0.0], content="Our office is closed on public holidays."),
        make_passage("p5", [0.8, 0.2, 0.0], content="Warranty claims need a receipt.", kb="kb_2"),
    ]


@pytest.fixture
def store(passages: List[Passage]) -> InMemoryKnowledgeStore:
    return InMemoryKnowledgeStore(passages)


@pytest.fixture
def embeddings() -> FakeEmbeddingService:
    return FakeEmbeddingService(default=[1.0, 0.0, 0.0])


@pytest.fixture
def anyio_backend():
    """The code under test is asyncio-based (asyncio.gather, asyncpg)."""
    return "asyncio"
