"""
RAG (Retrieval-Augmented Generation) module.

Provides retrieval components over a tenant's knowledge bases:
- Embedding gateway with sentence-aligned chunking
- Knowledge store contract (in-memory and SQL adapters)
- Semantic, hybrid, graph and adaptive search strategies
- LLM reranking
"""

from .config import RAGConfig, RetrievalOptions
from .embedding import EmbeddedChunk, EmbeddingGateway, cosine_similarity, generate_chunks
from .reranker import LLMReranker
from .retriever import (
    STRATEGIES,
    RetrievalMetadata,
    RetrievalResult,
    RetrievalStrategy,
    Retriever,
)
from .store import InMemoryKnowledgeStore, KnowledgeStore, Passage, load_passages

__all__ = [
    "EmbeddedChunk",
    "EmbeddingGateway",
    "InMemoryKnowledgeStore",
    "KnowledgeStore",
    "LLMReranker",
    "Passage",
    "RAGConfig",
    "RetrievalMetadata",
    "RetrievalOptions",
    "RetrievalResult",
    "RetrievalStrategy",
    "Retriever",
    "STRATEGIES",
    "cosine_similarity",
    "generate_chunks",
    "load_passages",
]
