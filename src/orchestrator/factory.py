"""
Wire a RAGAgent from a config and a knowledge store.
"""

from __future__ import annotations

from typing import Callable, Optional

from src.generation import AnswerGenerator
from src.llm import CompletionService, EmbeddingService, create_client, create_embedding_service
from src.llm.client import LLM_AUX_MODEL
from src.rag import EmbeddingGateway, LLMReranker, RAGConfig, Retriever
from src.rag.store import KnowledgeStore

from .agent import RAGAgent
from .memory import ConversationRegistry
from .query_analyzer import QueryAnalyzer
from .reflector import Reflector
from .trace import ExecutionTrace, log_execution_trace


def build_agent(
    config: RAGConfig,
    store: KnowledgeStore,
    completion_client: Optional[CompletionService] = None,
    aux_client: Optional[CompletionService] = None,
    embedding_service: Optional[EmbeddingService] = None,
    registry: Optional[ConversationRegistry] = None,
    trace_sink: Optional[Callable[[ExecutionTrace], None]] = log_execution_trace,
) -> RAGAgent:
    """
    Build the agent and its collaborators.

    completion_client answers the user; aux_client handles analysis, reranking and
    reflection prompts and defaults to the completion client when only that is given.
    Missing clients are created from environment settings.
    """
    if aux_client is None:
        aux_client = completion_client or create_client(LLM_AUX_MODEL)
    if completion_client is None:
        completion_client = create_client(config.model)
    if embedding_service is None:
        embedding_service = create_embedding_service()

    retriever = Retriever(
        config.organization_id,
        store,
        EmbeddingGateway(embedding_service),
        reranker=LLMReranker(aux_client),
    )
    return RAGAgent(
        config=config,
        analyzer=QueryAnalyzer(aux_client),
        retriever=retriever,
        reflector=Reflector(aux_client),
        generator=AnswerGenerator(completion_client),
        registry=registry,
        trace_sink=trace_sink,
    )
