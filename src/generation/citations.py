"""
Map [n] markers in a generated answer back to the retrieved passages they cite.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List

from src.rag.retriever import RetrievalResult

_MARKER_RE = re.compile(r"\[(\d+)\]")
SNIPPET_CHARS = 200


@dataclass
class Citation:
    """Marker number, cited passage id and the start of its text."""

    index: int
    chunk_id: str
    snippet: str = ""


def _snippet(content: str) -> str:
    text = (content or "").strip()
    if len(text) <= SNIPPET_CHARS:
        return text
    return text[:SNIPPET_CHARS].rstrip() + "..."


def extract_citations(answer: str, results: List[RetrievalResult]) -> List[Citation]:
    """
    One Citation per distinct marker, ordered by marker number.

    Marker [n] refers to results[n - 1]; numbers outside the result list are ignored.
    """
    cited = {int(n) for n in _MARKER_RE.findall(answer or "")}
    return [
        Citation(index=n, chunk_id=results[n - 1].metadata.chunk_id, snippet=_snippet(results[n - 1].content))
        for n in sorted(cited)
        if 1 <= n <= len(results)
    ]
