"""
Query analyzer: decides whether to retrieve, which strategy to use, and how to expand the query.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from src.llm.client import CompletionService
from src.llm.errors import AnalysisParseError, ExpansionParseError, ServiceError
from src.llm.parsing import clamp_unit, coerce_bool, coerce_string_list, parse_json_array, parse_json_object
from src.rag.retriever import STRATEGIES

from .trace import ChainOfThoughtStep

logger = logging.getLogger(__name__)

FALLBACK_STRATEGY = "hybrid"
FALLBACK_CONFIDENCE = 0.5
MAX_EXPANSIONS = 3


@dataclass
class AgentDecision:
    """Outcome of query analysis; confidence is always within [0, 1]."""

    should_retrieve: bool
    strategy: str
    reasoning: str
    confidence: float
    query_expansions: List[str] = field(default_factory=list)
    chain_of_thought: List[ChainOfThoughtStep] = field(default_factory=list)
    processing_time_ms: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AgentDecision":
        return cls(
            should_retrieve=bool(data["should_retrieve"]),
            strategy=str(data["strategy"]),
            reasoning=str(data.get("reasoning", "")),
            confidence=clamp_unit(data.get("confidence"), FALLBACK_CONFIDENCE),
            query_expansions=list(data.get("query_expansions") or []),
            chain_of_thought=[ChainOfThoughtStep(**s) for s in data.get("chain_of_thought") or []],
            processing_time_ms=data.get("processing_time_ms"),
        )


def fallback_decision(reason: str) -> AgentDecision:
    """Retrieve broadly when the model's decision cannot be trusted."""
    return AgentDecision(
        should_retrieve=True,
        strategy=FALLBACK_STRATEGY,
        reasoning=reason,
        confidence=FALLBACK_CONFIDENCE,
        query_expansions=[],
    )


def _build_analysis_prompt(query: str, recent_history: List[str]) -> str:
    history = "\n".join(recent_history[-3:])
    return f"""You are an intelligent query analyzer for a RAG system.
Analyze this query and decide:
1. Does it need external knowledge retrieval?
2. What retrieval strategy would be best?
3. Should we expand the query for better results?

Query: "{query}"

Recent conversation:
{history}

Consider:
- Can this be answered from general knowledge?
- Does it reference specific documents/products?
- Does it need real-time data?
- Is it a follow-up question needing context?

Respond with ONLY valid JSON, no markdown code blocks or additional text:

{{
  "shouldRetrieve": boolean,
  "strategy": "semantic" | "hybrid" | "graph" | "adaptive",
  "reasoning": "Brief explanation",
  "confidence": 0.0-1.0,
  "queryExpansions": ["expanded query 1", "expanded query 2"]
}}"""


def _build_expansion_prompt(query: str) -> str:
    return f"""Generate 3 semantically similar variations of this query for better document retrieval:

Original: "{query}"

Return ONLY a JSON array of strings, no other text:
["variation 1", "variation 2", "variation 3"]"""


def parse_decision(raw: str) -> AgentDecision:
    """Parse the analyzer's JSON. Raises AnalysisParseError when shouldRetrieve is missing."""
    data = parse_json_object(raw, AnalysisParseError)
    if "shouldRetrieve" not in data:
        raise AnalysisParseError("Missing required field: shouldRetrieve")
    strategy = str(data.get("strategy") or FALLBACK_STRATEGY).strip().lower()
    if strategy not in STRATEGIES:
        strategy = FALLBACK_STRATEGY
    return AgentDecision(
        should_retrieve=coerce_bool(data["shouldRetrieve"], default=True),
        strategy=strategy,
        reasoning=str(data.get("reasoning") or "").strip(),
        confidence=clamp_unit(data.get("confidence"), FALLBACK_CONFIDENCE),
        query_expansions=coerce_string_list(data.get("queryExpansions")),
    )


class QueryAnalyzer:
    """LLM-driven retrieval decision and query expansion."""

    def __init__(self, client: CompletionService, max_tokens: int = 512):
        self.client = client
        self.max_tokens = max_tokens

    async def analyze_query(self, query: str, recent_history: Optional[List[str]] = None) -> AgentDecision:
        """
        Ask the model for a retrieval decision.

        Malformed output degrades to a "retrieve broadly" fallback; service errors propagate.
        """
        completion = await self.client.complete(
            None,
            [{"role": "user", "content": _build_analysis_prompt(query, recent_history or [])}],
            temperature=0.3,
            max_tokens=self.max_tokens,
        )
        logger.debug("Raw analysis response: %s", completion.text)
        try:
            return parse_decision(completion.text)
        except AnalysisParseError as e:
            logger.warning("Query analysis failed, using fallback decision: %s", e)
            return fallback_decision(f"Fallback due to parsing error: {e}")

    async def expand_query(self, query: str) -> List[str]:
        """Original query followed by up to three model variants; never raises."""
        try:
            completion = await self.client.complete(
                None,
                [{"role": "user", "content": _build_expansion_prompt(query)}],
                temperature=0.7,
                max_tokens=self.max_tokens,
            )
            variants = coerce_string_list(parse_json_array(completion.text, ExpansionParseError))
        except (ExpansionParseError, ServiceError) as e:
            logger.warning("Query expansion failed: %s", e)
            return [query]
        expansions = [query]
        for v in variants:
            if v not in expansions:
                expansions.append(v)
            if len(expansions) > MAX_EXPANSIONS:
                break
        return expansions
