"""
Orchestrator: query analysis, self-reflection, conversation memory and the agentic RAG flow.
"""

from .agent import ExecutionContext, ExecutionPerformance, RAGAgent, RAGExecutionResult
from .factory import build_agent
from .memory import (
    ConversationContextState,
    ConversationMemory,
    ConversationRegistry,
    Entity,
    Fact,
    MemoryEntry,
)
from .query_analyzer import AgentDecision, QueryAnalyzer, fallback_decision
from .reflector import Reflector, RelevanceEvaluation, ResponseValidation
from .tools import (
    KnowledgeSearchFailure,
    KnowledgeSearchResult,
    KnowledgeSearchSuccess,
    search_knowledge,
)
from .trace import ChainOfThoughtStep, ExecutionTrace, ReasoningStep, TraceError, log_execution_trace

__all__ = [
    "AgentDecision",
    "ChainOfThoughtStep",
    "ConversationContextState",
    "ConversationMemory",
    "ConversationRegistry",
    "Entity",
    "ExecutionContext",
    "ExecutionPerformance",
    "ExecutionTrace",
    "Fact",
    "KnowledgeSearchFailure",
    "KnowledgeSearchResult",
    "KnowledgeSearchSuccess",
    "MemoryEntry",
    "QueryAnalyzer",
    "RAGAgent",
    "RAGExecutionResult",
    "ReasoningStep",
    "Reflector",
    "RelevanceEvaluation",
    "ResponseValidation",
    "TraceError",
    "build_agent",
    "fallback_decision",
    "log_execution_trace",
]
