"""
LLM reranker for second-stage ordering of retrieved passages.
"""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, List

from src.llm.client import CompletionService
from src.llm.errors import RerankingFailure
from src.llm.parsing import parse_json_array

if TYPE_CHECKING:
    from .retriever import RetrievalResult

logger = logging.getLogger(__name__)

# Not worth a model call for this many candidates or fewer
MIN_CANDIDATES = 4


def _build_prompt(query: str, results: List["RetrievalResult"]) -> str:
    docs = "\n\n".join(
        f"{i}. {r.metadata.title}\n{r.content[:200]}..." for i, r in enumerate(results, 1)
    )
    return f"""Rerank these documents by relevance to the query.
Query: "{query}"

Documents:
{docs}

Return ONLY a JSON array of document numbers in order of relevance, e.g., [3, 1, 4, 2]"""


def apply_ranking(results: List["RetrievalResult"], ranking: List[object]) -> List["RetrievalResult"]:
    """
    Reorder results by a 1-based index list. Out-of-range, repeated and non-integer
    entries are ignored; results the ranking omits are appended in original order.
    """
    picked: List[int] = []
    for raw in ranking:
        if isinstance(raw, bool) or not isinstance(raw, (int, float)):
            continue
        if isinstance(raw, float) and (not math.isfinite(raw) or not raw.is_integer()):
            continue
        idx = int(raw)
        if 1 <= idx <= len(results) and (idx - 1) not in picked:
            picked.append(idx - 1)
    picked.extend(i for i in range(len(results)) if i not in picked)
    return [results[i] for i in picked]


class LLMReranker:
    """Asks a completion model for a relevance-ordered permutation of the candidates."""

    def __init__(self, client: CompletionService, temperature: float = 0.1, max_tokens: int = 200):
        self.client = client
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def rerank(self, query: str, results: List["RetrievalResult"]) -> List["RetrievalResult"]:
        """Return results reordered by the model; on any failure the input order is kept."""
        if len(results) < MIN_CANDIDATES:
            return results
        try:
            completion = await self.client.complete(
                None,
                [{"role": "user", "content": _build_prompt(query, results)}],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
            ranking = parse_json_array(completion.text, RerankingFailure)
            return apply_ranking(results, ranking)
        except Exception as e:
            logger.warning("Reranking failed, keeping score order: %s", e)
            return results
