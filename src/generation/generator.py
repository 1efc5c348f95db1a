"""
Answer generator: builds the cited system prompt, calls the LLM, returns answer text.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import List, Optional

from src.llm.client import CompletionService, TokenUsage
from src.rag.retriever import RetrievalResult

from .citations import Citation, extract_citations
from .config import GenerationConfig
from .context_builder import build_system_prompt


@dataclass
class GeneratedAnswer:
    """Result of RAG answer generation."""

    text: str
    citations: List[Citation] = field(default_factory=list)
    usage: Optional[TokenUsage] = None
    latency_ms: float = 0.0


class AnswerGenerator:
    """Generate answers from a query, conversation history and retrieved passages."""

    def __init__(self, client: CompletionService):
        self.client = client

    async def generate(
        self,
        query: str,
        history: List[dict],
        results: List[RetrievalResult],
        config: Optional[GenerationConfig] = None,
    ) -> GeneratedAnswer:
        """History comes first; the query is appended as the final user turn."""
        config = config or GenerationConfig()
        messages = [*history, {"role": "user", "content": query}]
        start = time.perf_counter()
        completion = await self.client.complete(
            build_system_prompt(results),
            messages,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
        )
        latency_ms = (time.perf_counter() - start) * 1000
        return GeneratedAnswer(
            text=completion.text,
            citations=extract_citations(completion.text, results),
            usage=completion.usage,
            latency_ms=latency_ms,
        )
