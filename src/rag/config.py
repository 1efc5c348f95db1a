"""
Configuration for the agentic RAG pipeline.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List, Optional

from src.llm.client import LLM_MODEL


@dataclass
class RetrievalOptions:
    """Per-call retrieval options."""

    limit: int = 5
    min_score: float = 0.5
    knowledge_base_ids: Optional[List[str]] = None
    use_reranking: bool = True


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    raw = os.getenv(name)
    return float(raw) if raw else default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class RAGConfig:
    """Configuration for one tenant's agentic RAG runs."""

    organization_id: str
    model: str = LLM_MODEL
    temperature: float = 0.7
    max_tokens: int = 1000
    knowledge_base_ids: Optional[List[str]] = None
    enable_chain_of_thought: bool = True
    enable_self_reflection: bool = True
    max_iterations: int = 3
    min_confidence: float = 0.7
    retrieval_limit: int = 5
    min_score: float = 0.5
    # Extra retrieval round after low-quality reflection
    followup_limit: int = 3
    followup_min_score: float = 0.6
    # Whole-execution deadline in seconds; None means no deadline
    timeout_s: Optional[float] = None

    @classmethod
    def from_env(cls, organization_id: str, **overrides) -> "RAGConfig":
        """Build a config from RAG_* environment variables; keyword overrides win."""
        kb_ids = os.getenv("RAG_KNOWLEDGE_BASE_IDS")
        values = dict(
            organization_id=organization_id,
            model=os.getenv("LLM_MODEL", LLM_MODEL),
            temperature=_env_float("RAG_TEMPERATURE", 0.7),
            max_tokens=int(os.getenv("RAG_MAX_TOKENS", "1000")),
            knowledge_base_ids=[k.strip() for k in kb_ids.split(",") if k.strip()] if kb_ids else None,
            enable_chain_of_thought=_env_bool("RAG_CHAIN_OF_THOUGHT", True),
            enable_self_reflection=_env_bool("RAG_SELF_REFLECTION", True),
            max_iterations=int(os.getenv("RAG_MAX_ITERATIONS", "3")),
            min_confidence=_env_float("RAG_MIN_CONFIDENCE", 0.7),
            timeout_s=_env_float("RAG_TIMEOUT_S", None),
        )
        values.update(overrides)
        return cls(**values)
