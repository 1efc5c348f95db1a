"""
Self-reflection: LLM judgement of retrieved-passage relevance and of the final answer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List

from src.llm.client import CompletionService
from src.llm.errors import RelevanceParseError, ValidationParseError
from src.llm.parsing import clamp_unit, coerce_bool, coerce_string_list, parse_json_object
from src.rag.retriever import RetrievalResult

logger = logging.getLogger(__name__)

RELEVANCE_SNIPPET_CHARS = 300
VALIDATION_SNIPPET_CHARS = 200


@dataclass
class RelevanceEvaluation:
    """is_relevant has one entry per evaluated document, in the same order."""

    is_relevant: List[bool]
    overall_quality: float
    should_retrieve_more: bool
    feedback: str


@dataclass
class ResponseValidation:
    is_factually_accurate: bool
    confidence: float
    issues: List[str] = field(default_factory=list)

    @property
    def hallucination_detected(self) -> bool:
        return bool(self.issues)

    @property
    def reasoning(self) -> str:
        return "; ".join(self.issues) if self.issues else "No issues detected"


def _build_relevance_prompt(query: str, documents: List[RetrievalResult]) -> str:
    docs = "\n\n".join(
        f"{i}. {d.metadata.title}\n{d.content[:RELEVANCE_SNIPPET_CHARS]}..."
        for i, d in enumerate(documents, 1)
    )
    return f"""Evaluate the relevance of these retrieved documents for answering the query.

Query: "{query}"

Documents:
{docs}

For each document, determine if it's relevant (true/false).
Also provide an overall quality score (0-1) and whether more retrieval is needed.

Respond in JSON format:
{{
  "isRelevant": [true, false, true, ...],
  "overallQuality": 0.0-1.0,
  "shouldRetrieveMore": boolean,
  "feedback": "brief explanation"
}}"""


def _build_validation_prompt(query: str, response: str, context: List[RetrievalResult]) -> str:
    ctx = "\n\n".join(c.content[:VALIDATION_SNIPPET_CHARS] for c in context)
    return f"""Validate this AI response against the provided context.

Query: "{query}"

Response: "{response}"

Context:
{ctx}

Check for:
1. Factual accuracy against context
2. Hallucinations or unsupported claims
3. Proper use of context

Respond in JSON format:
{{
  "isFactuallyAccurate": boolean,
  "confidence": 0.0-1.0,
  "issues": ["issue 1", "issue 2"]
}}"""


def parse_relevance(raw: str, document_count: int) -> RelevanceEvaluation:
    data = parse_json_object(raw, RelevanceParseError)
    flags = data.get("isRelevant")
    if not isinstance(flags, list):
        raise RelevanceParseError("isRelevant must be a list")
    # Align to the input: extra flags are dropped, missing ones count as relevant.
    is_relevant = [coerce_bool(f, default=True) for f in flags[:document_count]]
    is_relevant.extend([True] * (document_count - len(is_relevant)))
    return RelevanceEvaluation(
        is_relevant=is_relevant,
        overall_quality=clamp_unit(data.get("overallQuality"), 0.0),
        should_retrieve_more=coerce_bool(data.get("shouldRetrieveMore"), default=False),
        feedback=str(data.get("feedback") or data.get("reasoning") or "").strip(),
    )


def parse_validation(raw: str) -> ResponseValidation:
    data = parse_json_object(raw, ValidationParseError)
    if "isFactuallyAccurate" not in data:
        raise ValidationParseError("Missing required field: isFactuallyAccurate")
    return ResponseValidation(
        is_factually_accurate=coerce_bool(data["isFactuallyAccurate"], default=True),
        confidence=clamp_unit(data.get("confidence"), 0.5),
        issues=coerce_string_list(data.get("issues")),
    )


class Reflector:
    """Scores retrieval and validates answers; parse failures fall back optimistically."""

    def __init__(self, client: CompletionService, max_tokens: int = 512):
        self.client = client
        self.max_tokens = max_tokens

    async def evaluate_relevance(self, query: str, documents: List[RetrievalResult]) -> RelevanceEvaluation:
        if not documents:
            return RelevanceEvaluation(
                is_relevant=[],
                overall_quality=0.0,
                should_retrieve_more=True,
                feedback="No documents retrieved",
            )
        completion = await self.client.complete(
            None,
            [{"role": "user", "content": _build_relevance_prompt(query, documents)}],
            temperature=0.2,
            max_tokens=self.max_tokens,
        )
        try:
            return parse_relevance(completion.text, len(documents))
        except RelevanceParseError as e:
            logger.warning("Relevance evaluation failed, assuming relevance: %s", e)
            return RelevanceEvaluation(
                is_relevant=[True] * len(documents),
                overall_quality=0.7,
                should_retrieve_more=False,
                feedback="Evaluation failed, assuming relevance",
            )

    async def validate_response(
        self,
        query: str,
        response: str,
        context_docs: List[RetrievalResult],
    ) -> ResponseValidation:
        completion = await self.client.complete(
            None,
            [{"role": "user", "content": _build_validation_prompt(query, response, context_docs)}],
            temperature=0.1,
            max_tokens=self.max_tokens,
        )
        try:
            return parse_validation(completion.text)
        except ValidationParseError as e:
            logger.warning("Response validation failed: %s", e)
            return ResponseValidation(is_factually_accurate=True, confidence=0.5, issues=[])
