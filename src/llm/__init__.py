"""
LLM module: completion and embedding clients, model-output parsing, error taxonomy.
"""

from .client import Completion, CompletionClient, CompletionService, TokenUsage, create_client
from .embeddings import EmbeddingService, OpenAIEmbeddingService, create_embedding_service
from .errors import (
    AnalysisParseError,
    ExpansionParseError,
    ModelOutputParseError,
    RelevanceParseError,
    RerankingFailure,
    ServiceError,
    ServiceTimeout,
    ServiceUnavailable,
    ValidationParseError,
)

__all__ = [
    "AnalysisParseError",
    "Completion",
    "CompletionClient",
    "CompletionService",
    "EmbeddingService",
    "ExpansionParseError",
    "ModelOutputParseError",
    "OpenAIEmbeddingService",
    "RelevanceParseError",
    "RerankingFailure",
    "ServiceError",
    "ServiceTimeout",
    "ServiceUnavailable",
    "TokenUsage",
    "ValidationParseError",
    "create_client",
    "create_embedding_service",
]
