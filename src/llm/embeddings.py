"""
Embedding service clients.
"""

from __future__ import annotations

import logging
import os
from typing import List, Optional, Protocol

from openai import AsyncOpenAI

from .client import LLM_API_KEY, LLM_BASE_URL, LLM_MAX_RETRIES, LLM_TIMEOUT_S, call_with_retries

logger = logging.getLogger(__name__)

EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "text-embedding-3-large")
EMBEDDING_BACKEND = os.getenv("EMBEDDING_BACKEND", "openai")


class EmbeddingService(Protocol):
    """Turns one text into one fixed-length vector."""

    async def embed(self, text: str) -> List[float]:
        ...


class OpenAIEmbeddingService:
    """Embeddings over the OpenAI embeddings endpoint."""

    def __init__(
        self,
        model_name: str = EMBEDDING_MODEL,
        *,
        dimensions: Optional[int] = None,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = LLM_TIMEOUT_S,
        max_retries: int = LLM_MAX_RETRIES,
        client: Optional[AsyncOpenAI] = None,
    ):
        if client is None:
            key = api_key or LLM_API_KEY
            if not key:
                raise ValueError("API key required. Set LLM_API_KEY or OPENAI_API_KEY.")
            client = AsyncOpenAI(base_url=base_url or LLM_BASE_URL, api_key=key, max_retries=0)
        self.client = client
        self.model_name = model_name
        self.dimensions = dimensions
        self.timeout = timeout
        self.max_retries = max_retries

    async def embed(self, text: str) -> List[float]:
        create_kw: dict = {"model": self.model_name, "input": text}
        if self.dimensions is not None:
            create_kw["dimensions"] = self.dimensions
        if self.timeout is not None:
            create_kw["timeout"] = self.timeout
        response = await call_with_retries(
            lambda: self.client.embeddings.create(**create_kw),
            service="embedding",
            max_retries=self.max_retries,
        )
        return list(response.data[0].embedding)


def create_embedding_service(backend: Optional[str] = None, **kwargs) -> EmbeddingService:
    """Build the configured embedding backend ("openai" or "local")."""
    backend = (backend or EMBEDDING_BACKEND).lower()
    if backend == "local":
        # sentence-transformers is an optional extra; only import it when asked for.
        from .local_embeddings import LocalEmbeddingService

        return LocalEmbeddingService(**kwargs)
    if backend == "openai":
        return OpenAIEmbeddingService(**kwargs)
    raise ValueError(f"Unknown embedding backend: {backend}")
