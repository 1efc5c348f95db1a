"""
Multi-strategy retriever: semantic, hybrid, graph and adaptive search over a knowledge store.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Literal, Optional, Sequence

import numpy as np

from src.llm.errors import ServiceUnavailable

from .config import RetrievalOptions
from .embedding import EmbeddingGateway
from .reranker import LLMReranker
from .store import KnowledgeStore, Passage
from .utils import dedupe_key, keyword_score, merge_results

logger = logging.getLogger(__name__)

RetrievalStrategy = Literal["semantic", "hybrid", "graph", "adaptive", "none"]
STRATEGIES = ("semantic", "hybrid", "graph", "adaptive", "none")

# Graph expansion scores neighbours just above the threshold
GRAPH_SCORE_FACTOR = 1.1


@dataclass
class RetrievalMetadata:
    source: str
    title: str
    knowledge_base_id: str
    chunk_id: str
    tags: Optional[List[str]] = None


@dataclass
class RetrievalResult:
    """One ranked passage returned by the retriever."""

    content: str
    score: float
    metadata: RetrievalMetadata

    @classmethod
    def from_passage(cls, passage: Passage, score: float) -> "RetrievalResult":
        return cls(
            content=passage.content,
            score=score,
            metadata=RetrievalMetadata(
                source=passage.knowledge_base_name,
                title=passage.title,
                knowledge_base_id=passage.knowledge_base_id,
                chunk_id=passage.id,
                tags=list(passage.tags) if passage.tags else None,
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RetrievalResult":
        return cls(
            content=data["content"],
            score=float(data["score"]),
            metadata=RetrievalMetadata(**data["metadata"]),
        )


class Retriever:
    """Routes a list of query variants to a search strategy for one tenant."""

    def __init__(
        self,
        organization_id: str,
        store: KnowledgeStore,
        embeddings: EmbeddingGateway,
        reranker: Optional[LLMReranker] = None,
    ):
        self.organization_id = organization_id
        self.store = store
        self.embeddings = embeddings
        self.reranker = reranker

    async def retrieve(
        self,
        queries: Sequence[str],
        strategy: str,
        options: Optional[RetrievalOptions] = None,
    ) -> List[RetrievalResult]:
        """
        Search with the given strategy and return at most options.limit results.

        Fetches 2 x limit candidates, reranks them when enabled, then truncates.
        Unknown strategies (and "none") fall back to hybrid.
        """
        options = options or RetrievalOptions()
        queries = [q.strip() for q in queries if q and q.strip()]
        if not queries or options.limit <= 0:
            return []

        candidate_k = options.limit * 2
        kb_ids = options.knowledge_base_ids
        if strategy == "semantic":
            results = await self._semantic(queries, candidate_k, options.min_score, kb_ids)
        elif strategy == "graph":
            results = await self._graph(queries, candidate_k, options.min_score, kb_ids)
        elif strategy == "adaptive":
            results = await self._adaptive(queries, candidate_k, options.min_score, kb_ids)
        else:
            results = await self._hybrid(queries, candidate_k, options.min_score, kb_ids)

        if options.use_reranking and self.reranker is not None and results:
            results = await self.reranker.rerank(queries[0], results)

        logger.info(
            "Retrieved %s candidates (strategy=%s, variants=%s)",
            len(results),
            strategy,
            len(queries),
        )
        return results[: options.limit]

    async def _semantic(
        self,
        queries: List[str],
        limit: int,
        min_score: float,
        kb_ids: Optional[Sequence[str]],
    ) -> List[RetrievalResult]:
        """Cosine similarity of every query variant against every active passage."""
        query_embeddings, passages = await asyncio.gather(
            asyncio.gather(*(self.embeddings.embed(q) for q in queries)),
            self.store.list_passages(self.organization_id, kb_ids),
        )
        dim = len(query_embeddings[0])
        if any(len(q) != dim for q in query_embeddings):
            raise ServiceUnavailable("Embedding service returned vectors of differing dimensions")

        candidates = [p for p in passages if p.embedding]
        mismatched = [p.id for p in candidates if len(p.embedding) != dim]
        if mismatched:
            logger.warning(
                "Skipping %d passages with embedding dimension != %d: %s",
                len(mismatched),
                dim,
                ", ".join(mismatched),
            )
            candidates = [p for p in candidates if len(p.embedding) == dim]
        if not candidates:
            return []

        matrix = np.asarray([p.embedding for p in candidates], dtype=float)
        norms = np.linalg.norm(matrix, axis=1)

        hits: List[RetrievalResult] = []
        for q_emb in query_embeddings:
            q = np.asarray(q_emb, dtype=float)
            denom = norms * np.linalg.norm(q)
            with np.errstate(divide="ignore", invalid="ignore"):
                sims = np.clip(np.where(denom > 0, matrix @ q / denom, 0.0), -1.0, 1.0)
            for passage, sim in zip(candidates, sims):
                score = float(sim)
                if score >= min_score:
                    hits.append(RetrievalResult.from_passage(passage, score))
        return merge_results(hits)[:limit]

    async def _keyword(
        self,
        queries: List[str],
        limit: int,
        kb_ids: Optional[Sequence[str]],
    ) -> List[RetrievalResult]:
        per_query = await asyncio.gather(
            *(self.store.keyword_search(self.organization_id, q, kb_ids, limit) for q in queries)
        )
        hits: List[RetrievalResult] = []
        for q, passages in zip(queries, per_query):
            for p in passages:
                score = keyword_score(q, f"{p.content} {p.title}")
                hits.append(RetrievalResult.from_passage(p, score))
        return hits

    async def _hybrid(
        self,
        queries: List[str],
        limit: int,
        min_score: float,
        kb_ids: Optional[Sequence[str]],
    ) -> List[RetrievalResult]:
        """
        Union of semantic and keyword hits, deduped and sorted by each branch's own score.

        There is no weighted blend: semantic cosine scores and keyword term-coverage
        scores are compared directly.
        """
        semantic, keyword = await asyncio.gather(
            self._semantic(queries, limit, min_score, kb_ids),
            self._keyword(queries, limit, kb_ids),
        )
        return merge_results([*semantic, *keyword])[:limit]

    async def _graph(
        self,
        queries: List[str],
        limit: int,
        min_score: float,
        kb_ids: Optional[Sequence[str]],
    ) -> List[RetrievalResult]:
        """Semantic seeds, then other passages from the seeds' knowledge bases."""
        seeds = await self._semantic(queries, math.ceil(limit / 2), min_score, kb_ids)
        if not seeds:
            return []

        seed_kbs = list(dict.fromkeys(r.metadata.knowledge_base_id for r in seeds))
        related = await self.store.list_passages(self.organization_id, seed_kbs, limit)

        expanded = list(seeds)
        present = {dedupe_key(r) for r in seeds}
        for passage in related:
            result = RetrievalResult.from_passage(passage, min_score * GRAPH_SCORE_FACTOR)
            key = dedupe_key(result)
            if key in present:
                continue
            present.add(key)
            expanded.append(result)
        return expanded[:limit]

    async def _adaptive(
        self,
        queries: List[str],
        limit: int,
        min_score: float,
        kb_ids: Optional[Sequence[str]],
    ) -> List[RetrievalResult]:
        """Semantic and hybrid at half the limit each, run concurrently and merged."""
        half = math.ceil(limit / 2)
        semantic, hybrid = await asyncio.gather(
            self._semantic(queries, half, min_score, kb_ids),
            self._hybrid(queries, half, min_score, kb_ids),
        )
        return merge_results([*semantic, *hybrid])[:limit]
