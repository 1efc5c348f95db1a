"""
Embedding gateway: sentence-boundary chunking, single and per-chunk embedding, cosine similarity.
"""

from __future__ import annotations

import asyncio
import math
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from src.llm.embeddings import EmbeddingService

_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")


@dataclass
class EmbeddedChunk:
    """One chunk of a document with its embedding."""

    embedding: List[float]
    content: str
    metadata: Optional[Dict[str, Any]] = None


def _word_count(sentence: str) -> int:
    return len(sentence.split())


def generate_chunks(text: str, chunk_size: int = 300, overlap_pct: float = 50) -> List[str]:
    """
    Split text into sentence-aligned chunks of at most ~chunk_size words.

    Sentences are accumulated until adding the next one would exceed chunk_size;
    the closed chunk's trailing overlap_pct of sentences (rounded up) seeds the next
    chunk. A single sentence longer than chunk_size still becomes its own chunk.
    """
    sentences = [s.strip() for s in _SENTENCE_SPLIT_RE.split((text or "").strip()) if s.strip()]

    chunks: List[str] = []
    current: List[str] = []
    current_len = 0

    for sentence in sentences:
        sentence_len = _word_count(sentence)
        if current and current_len + sentence_len > chunk_size:
            chunks.append(". ".join(current) + ".")
            overlap_count = math.ceil(len(current) * (overlap_pct / 100))
            current = current[len(current) - overlap_count :] if overlap_count > 0 else []
            current_len = sum(_word_count(s) for s in current)
        current.append(sentence)
        current_len += sentence_len

    if current:
        chunks.append(". ".join(current) + ".")
    return chunks


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity in [-1, 1]; 0.0 when either vector has zero norm."""
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    if va.shape != vb.shape:
        raise ValueError(f"Embedding dimension mismatch: {va.shape} vs {vb.shape}")
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom == 0.0:
        return 0.0
    return max(-1.0, min(1.0, float(np.dot(va, vb)) / denom))


class EmbeddingGateway:
    """
    Thin async wrapper over an EmbeddingService.

    Service failures surface as ServiceError from the underlying client; no retry
    happens here.
    """

    def __init__(
        self,
        service: EmbeddingService,
        *,
        chunk_size: int = 300,
        overlap_pct: float = 50,
    ):
        self.service = service
        self.chunk_size = chunk_size
        self.overlap_pct = overlap_pct

    async def embed(self, text: str) -> List[float]:
        return await self.service.embed(text.replace("\n", " "))

    def chunk(
        self,
        text: str,
        chunk_size: Optional[int] = None,
        overlap_pct: Optional[float] = None,
    ) -> List[str]:
        return generate_chunks(
            text,
            chunk_size=chunk_size if chunk_size is not None else self.chunk_size,
            overlap_pct=overlap_pct if overlap_pct is not None else self.overlap_pct,
        )

    async def embed_chunks(
        self,
        text: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> List[EmbeddedChunk]:
        """Chunk text and embed every chunk concurrently; output order matches chunk order."""
        chunks = self.chunk(text)
        embeddings = await asyncio.gather(*(self.embed(c) for c in chunks))
        return [
            EmbeddedChunk(embedding=list(emb), content=content, metadata=metadata)
            for content, emb in zip(chunks, embeddings)
        ]

    @staticmethod
    def similarity(a: Sequence[float], b: Sequence[float]) -> float:
        return cosine_similarity(a, b)
