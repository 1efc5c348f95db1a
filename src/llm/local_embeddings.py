"""
Local embedding backend using sentence-transformers.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import List

from sentence_transformers import SentenceTransformer

logger = logging.getLogger(__name__)

LOCAL_EMBEDDING_MODEL = os.getenv("LOCAL_EMBEDDING_MODEL", "all-MiniLM-L6-v2")


class LocalEmbeddingService:
    """Normalized sentence-transformers embeddings, encoded off the event loop."""

    def __init__(self, model_name: str = LOCAL_EMBEDDING_MODEL):
        self.model_name = model_name
        self.model = SentenceTransformer(model_name)
        logger.info("Loaded local embedding model %s", model_name)

    def _encode(self, text: str) -> List[float]:
        emb = self.model.encode(
            [text],
            convert_to_numpy=True,
            normalize_embeddings=True,
        )[0]
        return [float(x) for x in emb]

    async def embed(self, text: str) -> List[float]:
        return await asyncio.to_thread(self._encode, text)
