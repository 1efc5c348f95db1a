"""
RAG agent: query analysis, retrieval, self-reflection, generation and validation with full tracing.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from src.generation import AnswerGenerator, Citation, GenerationConfig
from src.llm.client import TokenUsage
from src.llm.errors import ServiceTimeout
from src.rag.config import RAGConfig, RetrievalOptions
from src.rag.retriever import RetrievalResult, Retriever
from src.rag.utils import dedupe_key

from .memory import ConversationMemory, ConversationRegistry
from .query_analyzer import AgentDecision, QueryAnalyzer
from .reflector import Reflector, ResponseValidation
from .trace import ChainOfThoughtStep, ExecutionTrace, log_execution_trace

logger = logging.getLogger(__name__)

# Number of history messages rendered for the analyzer
ANALYSIS_HISTORY_MESSAGES = 5


@dataclass
class ExecutionPerformance:
    total_time_ms: float = 0.0
    retrieval_time_ms: float = 0.0
    generation_time_ms: float = 0.0
    evaluation_time_ms: float = 0.0


@dataclass
class ExecutionContext:
    retrieved_docs: int
    iterations: int
    decision: AgentDecision
    chain_of_thought: List[ChainOfThoughtStep]
    performance: ExecutionPerformance
    confidence: float


@dataclass
class RAGExecutionResult:
    """What execute() hands back to the conversation layer."""

    text: str
    usage: Optional[TokenUsage]
    sources: List[RetrievalResult]
    context: ExecutionContext
    validation: Optional[ResponseValidation] = None
    citations: List[Citation] = field(default_factory=list)
    trace: Optional[ExecutionTrace] = field(default=None, repr=False)


def _format_history(history: List[Dict[str, str]]) -> List[str]:
    lines = [f"{m.get('role', 'user')}: {m.get('content', '')}" for m in history[-ANALYSIS_HISTORY_MESSAGES:]]
    return [line for line in lines if line.strip()]


class RAGAgent:
    """
    Runs one query through the agentic pipeline:

    1. query analysis (always)
    2. retrieval, when the analyzer asks for it
    3. self-reflection over retrieved passages, with at most one extra adaptive
       retrieval round when quality is low
    4. answer generation (always)
    5. answer validation, when reflection is enabled and passages were used

    Each call owns its ExecutionTrace; the trace is finalized and handed to
    trace_sink on success and on failure. Infrastructure errors are re-raised.
    """

    def __init__(
        self,
        config: RAGConfig,
        analyzer: QueryAnalyzer,
        retriever: Retriever,
        reflector: Reflector,
        generator: AnswerGenerator,
        registry: Optional[ConversationRegistry] = None,
        trace_sink: Optional[Callable[[ExecutionTrace], None]] = log_execution_trace,
    ):
        self.config = config
        self.analyzer = analyzer
        self.retriever = retriever
        self.reflector = reflector
        self.generator = generator
        self.registry = registry
        self.trace_sink = trace_sink

    async def execute(
        self,
        query: str,
        history: Optional[List[Dict[str, str]]] = None,
        conversation_id: Optional[str] = None,
    ) -> RAGExecutionResult:
        memory: Optional[ConversationMemory] = None
        if self.registry is not None and conversation_id is not None:
            memory = self.registry.get_or_create(conversation_id)
        if history is None:
            history = memory.get_history() if memory is not None else []

        trace = ExecutionTrace(query=query)
        try:
            result = await self._run_with_deadline(query, list(history), trace)
        except asyncio.CancelledError as e:
            trace.fail(e, "cancelled")
            self._emit(trace)
            raise
        except Exception as e:
            trace.fail(e)
            logger.error("RAG execution failed (trace %s): %s", trace.trace_id, trace.error.message)
            self._emit(trace)
            raise

        trace.finish(result)
        result.trace = trace
        self._emit(trace)
        if memory is not None:
            memory.add_memory(query, result.text, result.sources, result.context.decision)
        return result

    def _emit(self, trace: ExecutionTrace) -> None:
        if self.trace_sink is None:
            return
        try:
            self.trace_sink(trace)
        except Exception:
            logger.exception("Trace sink failed for trace %s", trace.trace_id)

    async def _run_with_deadline(
        self,
        query: str,
        history: List[Dict[str, str]],
        trace: ExecutionTrace,
    ) -> RAGExecutionResult:
        if self.config.timeout_s is None:
            return await self._run(query, history, trace)
        try:
            return await asyncio.wait_for(self._run(query, history, trace), self.config.timeout_s)
        except asyncio.TimeoutError as e:
            raise ServiceTimeout(f"RAG execution exceeded {self.config.timeout_s}s") from e

    def _think(self, trace: ExecutionTrace, thought: str, action: str, observation: Optional[str] = None):
        if self.config.enable_chain_of_thought:
            return trace.think(thought, action, observation)
        return None

    async def _run(
        self,
        query: str,
        history: List[Dict[str, str]],
        trace: ExecutionTrace,
    ) -> RAGExecutionResult:
        cfg = self.config
        start = time.perf_counter()
        perf = ExecutionPerformance()
        iterations = 0
        docs: List[RetrievalResult] = []

        # Query analysis
        step = trace.start_step("query_analysis", {"query": query, "history": history[-ANALYSIS_HISTORY_MESSAGES:]})
        self._think(
            trace,
            "I need to analyze the query to understand what information is needed",
            "Analyzing query intent and determining retrieval strategy",
        )
        analysis_start = time.perf_counter()
        decision = await self.analyzer.analyze_query(query, _format_history(history))
        decision.processing_time_ms = (time.perf_counter() - analysis_start) * 1000
        thought = self._think(
            trace,
            f"Query analysis confidence: {decision.confidence}",
            f"Selected strategy: {decision.strategy}",
            decision.reasoning,
        )
        if thought is not None:
            decision.chain_of_thought = [thought]
        trace.decisions.append(decision)
        step.complete(decision)
        logger.info(
            "Agent decision: retrieve=%s strategy=%s confidence=%.2f",
            decision.should_retrieve,
            decision.strategy,
            decision.confidence,
        )

        # Retrieval
        if decision.should_retrieve:
            queries = decision.query_expansions or [query]
            step = trace.start_step("retrieval", {"strategy": decision.strategy, "queries": queries})
            self._think(
                trace,
                f"I will search the knowledge base using {decision.strategy} strategy",
                "Retrieving relevant documents",
            )
            retrieval_start = time.perf_counter()
            docs = await self.retriever.retrieve(
                queries,
                decision.strategy,
                RetrievalOptions(
                    limit=cfg.retrieval_limit,
                    min_score=cfg.min_score,
                    knowledge_base_ids=cfg.knowledge_base_ids,
                ),
            )
            iterations += 1
            perf.retrieval_time_ms += (time.perf_counter() - retrieval_start) * 1000
            step.complete({"documents_retrieved": len(docs), "time_ms": perf.retrieval_time_ms})
            if docs:
                self._think(
                    trace,
                    f"Retrieved {len(docs)} documents",
                    "Evaluating relevance",
                    f"Average score: {sum(d.score for d in docs) / len(docs):.2f}",
                )
            logger.info("Retrieved %s documents", len(docs))

            # Self-reflection
            if cfg.enable_self_reflection and docs:
                docs, iterations = await self._reflect(query, docs, iterations, perf, trace)

        # Generation
        step = trace.start_step("generation", {"documents_used": len(docs)})
        self._think(
            trace,
            "Now I will generate a response based on the retrieved context",
            "Generating response with citations",
        )
        answer = await self.generator.generate(
            query,
            history,
            docs,
            GenerationConfig(max_tokens=cfg.max_tokens, temperature=cfg.temperature),
        )
        perf.generation_time_ms = answer.latency_ms
        step.complete({"response_length": len(answer.text), "time_ms": answer.latency_ms})

        # Validation
        validation: Optional[ResponseValidation] = None
        if cfg.enable_self_reflection and docs:
            step = trace.start_step("validation", {"response_length": len(answer.text), "documents": len(docs)})
            validation_start = time.perf_counter()
            validation = await self.reflector.validate_response(query, answer.text, docs)
            perf.evaluation_time_ms += (time.perf_counter() - validation_start) * 1000
            step.complete(validation)
            if not validation.is_factually_accurate and validation.confidence < cfg.min_confidence:
                logger.warning("Response validation failed, answer may contain inaccuracies: %s", validation.reasoning)

        confidence = decision.confidence * (validation.confidence if validation is not None else 1.0)
        perf.total_time_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "RAG run finished: docs=%s iterations=%s confidence=%.2f total_ms=%.1f",
            len(docs),
            iterations,
            confidence,
            perf.total_time_ms,
        )
        return RAGExecutionResult(
            text=answer.text,
            usage=answer.usage,
            sources=docs,
            context=ExecutionContext(
                retrieved_docs=len(docs),
                iterations=iterations,
                decision=decision,
                chain_of_thought=list(trace.chain_of_thought),
                performance=perf,
                confidence=confidence,
            ),
            validation=validation,
            citations=answer.citations,
        )

    async def _reflect(
        self,
        query: str,
        docs: List[RetrievalResult],
        iterations: int,
        perf: ExecutionPerformance,
        trace: ExecutionTrace,
    ):
        """Filter passages by relevance; run one follow-up round when quality is low."""
        cfg = self.config
        step = trace.start_step("evaluation", {"document_count": len(docs)})
        evaluation_start = time.perf_counter()
        evaluation = await self.reflector.evaluate_relevance(query, docs)
        perf.evaluation_time_ms += (time.perf_counter() - evaluation_start) * 1000

        kept = [d for d, relevant in zip(docs, evaluation.is_relevant) if relevant]
        self._think(
            trace,
            f"Evaluation quality: {evaluation.overall_quality:.2f}",
            "Filtering irrelevant documents",
            f"Kept {len(kept)}/{len(docs)} documents",
        )
        step.complete({"overall_quality": evaluation.overall_quality, "relevant_docs": len(kept)})

        if not (
            evaluation.should_retrieve_more
            and evaluation.overall_quality < cfg.min_confidence
            and iterations < cfg.max_iterations
        ):
            return kept, iterations

        logger.info("Quality %.2f below threshold, retrieving more", evaluation.overall_quality)
        self._think(
            trace,
            "Quality is below threshold, need more information",
            "Expanding query and retrieving additional documents",
        )
        step = trace.start_step("retrieval", {"strategy": "adaptive", "followup": True})
        retrieval_start = time.perf_counter()
        expanded = await self.analyzer.expand_query(query)
        more = await self.retriever.retrieve(
            expanded,
            "adaptive",
            RetrievalOptions(
                limit=cfg.followup_limit,
                min_score=cfg.followup_min_score,
                knowledge_base_ids=cfg.knowledge_base_ids,
            ),
        )
        iterations += 1
        perf.retrieval_time_ms += (time.perf_counter() - retrieval_start) * 1000

        present = {dedupe_key(d) for d in kept}
        added = 0
        for d in more:
            key = dedupe_key(d)
            if key not in present:
                present.add(key)
                kept.append(d)
                added += 1
        step.complete({"documents_retrieved": len(more), "documents_added": added})
        self._think(
            trace,
            f"Retrieved {len(more)} additional documents",
            "Proceeding to generation",
            f"Total documents: {len(kept)}",
        )
        return kept, iterations
