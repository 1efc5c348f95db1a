"""
Answer generation module for RAG pipeline.

- System prompt building from retrieved passages (citation markers [1], [2], ...)
- Answer generation with conversation history
- Citation extraction from model output
"""

from .citations import Citation, extract_citations
from .config import GenerationConfig
from .context_builder import build_context, build_system_prompt
from .generator import AnswerGenerator, GeneratedAnswer
from .prompts import ANSWER_SYSTEM_PROMPT

__all__ = [
    "ANSWER_SYSTEM_PROMPT",
    "AnswerGenerator",
    "Citation",
    "GeneratedAnswer",
    "GenerationConfig",
    "build_context",
    "build_system_prompt",
    "extract_citations",
]
