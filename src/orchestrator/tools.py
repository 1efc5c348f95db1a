"""
Knowledge-search tool exposed to the conversation agent.

The result is a tagged union: check ``status`` ("success" or "failure").
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Literal, Optional, Union

from src.llm.errors import ServiceError
from src.rag.retriever import RetrievalResult

from .agent import RAGAgent

logger = logging.getLogger(__name__)

HIGH_CONFIDENCE_THRESHOLD = 0.8


@dataclass
class KnowledgeSearchSuccess:
    answer: str
    confidence: float
    sources: List[RetrievalResult]
    iterations: int
    strategy: str
    status: Literal["success"] = "success"


@dataclass
class KnowledgeSearchFailure:
    message: str
    confidence: float = 0.0
    partial_answer: Optional[str] = None
    error: Optional[str] = None
    status: Literal["failure"] = "failure"


KnowledgeSearchResult = Union[KnowledgeSearchSuccess, KnowledgeSearchFailure]


async def search_knowledge(
    agent: RAGAgent,
    query: str,
    require_high_confidence: bool = False,
) -> KnowledgeSearchResult:
    """Run the agent on a standalone query; service failures come back as a failure variant."""
    try:
        result = await agent.execute(query, [])
    except ServiceError as e:
        logger.error("Knowledge search failed: %s", e)
        return KnowledgeSearchFailure(message="Failed to search knowledge base", error=str(e))

    if result.context.retrieved_docs == 0:
        return KnowledgeSearchFailure(message="No relevant information found in knowledge base")

    confidence = result.context.decision.confidence
    if require_high_confidence and confidence < HIGH_CONFIDENCE_THRESHOLD:
        return KnowledgeSearchFailure(
            message="Information found but confidence is below required threshold",
            confidence=confidence,
            partial_answer=result.text,
        )

    return KnowledgeSearchSuccess(
        answer=result.text,
        confidence=confidence,
        sources=result.sources,
        iterations=result.context.iterations,
        strategy=result.context.decision.strategy,
    )
