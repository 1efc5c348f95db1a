"""
Context builder for RAG answer generation.

Formats retrieved passages into LLM-ready text with citation markers [1], [2], ...
so the model can cite sources and we can map citations back to chunk IDs.
"""

from __future__ import annotations

from typing import List

from src.rag.retriever import RetrievalResult

from .prompts import ANSWER_SYSTEM_PROMPT, NO_CONTEXT


def build_context(results: List[RetrievalResult]) -> str:
    """
    Format retrieved passages into a single context block.

    Each passage is numbered [1], [2], ... (index + 1) with its title, full content
    and relevance as a percentage of its retrieval score.
    """
    if not results:
        return ""
    parts = [
        f"[{i}] Source: {r.metadata.title}\n{r.content}\n(Relevance: {r.score * 100:.0f}%)"
        for i, r in enumerate(results, 1)
    ]
    return "Relevant Context:\n" + "\n\n".join(parts)


def build_system_prompt(results: List[RetrievalResult]) -> str:
    """System prompt for the answer call, with numbered context or a no-context note."""
    return ANSWER_SYSTEM_PROMPT.format(context=build_context(results) or NO_CONTEXT)
