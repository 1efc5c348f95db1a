"""
Utility functions for RAG module.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Dict, Iterable, List, Tuple

if TYPE_CHECKING:
    from .retriever import RetrievalResult

MIN_TERM_LEN = 3


def keyword_score(query: str, text: str) -> float:
    """
    Fraction of query terms found in text.

    Numerator counts distinct terms of at least MIN_TERM_LEN characters present in
    text; denominator is the total number of whitespace-separated query terms.
    """
    terms = query.lower().split()
    if not terms:
        return 0.0
    text_lower = text.lower()
    found = {t for t in terms if len(t) >= MIN_TERM_LEN and t in text_lower}
    return len(found) / len(terms)


def dedupe_key(result: "RetrievalResult") -> str:
    """chunk_id when present, else the first 100 characters of content."""
    return result.metadata.chunk_id or result.content[:100]


def merge_results(results: Iterable["RetrievalResult"]) -> List["RetrievalResult"]:
    """
    Dedupe by dedupe_key keeping the highest score, then sort by score descending.

    Ties keep first-seen order, so the output does not depend on which concurrent
    search finished first.
    """
    best: Dict[str, Tuple[int, "RetrievalResult"]] = {}
    for order, r in enumerate(results):
        key = dedupe_key(r)
        seen = best.get(key)
        if seen is None:
            best[key] = (order, r)
        elif r.score > seen[1].score:
            best[key] = (seen[0], r)
    ranked = sorted(best.values(), key=lambda x: (-x[1].score, x[0]))
    return [r for _, r in ranked]
