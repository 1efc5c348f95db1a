"""
Tests for the RAG agent: phase flow, follow-up retrieval, tracing, failures, memory.
"""

from __future__ import annotations

import asyncio
from typing import List

import pytest

from conftest import (
    FakeCompletionClient,
    FakeEmbeddingService,
    analysis_json,
    relevance_json,
    validation_json,
)
from src.generation.prompts import NO_CONTEXT
from src.llm.errors import ServiceError, ServiceTimeout, ServiceUnavailable
from src.orchestrator import ConversationRegistry, ExecutionTrace, RAGAgent, build_agent
from src.rag import RAGConfig

ANSWER = "Returns are accepted within 30 days [1]."


def _agent(client, store, embeddings, traces: List[ExecutionTrace], registry=None, **overrides) -> RAGAgent:
    config = RAGConfig(organization_id="org_1", **overrides)
    return build_agent(
        config,
        store,
        completion_client=client,
        aux_client=client,
        embedding_service=embeddings,
        registry=registry,
        trace_sink=traces.append,
    )


def _client(**scripts) -> FakeCompletionClient:
    scripts.setdefault("answer", ANSWER)
    scripts.setdefault("validation", validation_json(True, 0.8))
    return FakeCompletionClient(**scripts)


@pytest.mark.anyio
async def test_no_retrieval_for_general_knowledge(store, embeddings):
    """What is the return policy? answered without the knowledge base."""
    traces: List[ExecutionTrace] = []
    client = _client(analysis=analysis_json(False, "none", 0.9))
    agent = _agent(client, store, embeddings, traces)

    result = await agent.execute("What is the return policy?")

    assert result.sources == []
    assert result.context.iterations == 0
    assert result.context.retrieved_docs == 0
    assert result.validation is None
    assert result.context.confidence == pytest.approx(0.9)
    assert client.count("relevance") == 0
    assert client.count("validation") == 0
    assert embeddings.calls == []
    answer_call = next(c for c in client.calls if c["route"] == "answer")
    assert NO_CONTEXT in answer_call["system_prompt"]
    assert [s.type for s in traces[0].steps] == ["query_analysis", "generation"]


@pytest.mark.anyio
async def test_full_flow_with_reflection_and_validation(store, embeddings):
    traces: List[ExecutionTrace] = []
    client = _client(
        analysis=analysis_json(True, "semantic", 0.9),
        relevance=relevance_json([True, True, False, True], quality=0.9),
    )
    agent = _agent(client, store, embeddings, traces)

    result = await agent.execute("What is the return policy?", history=[{"role": "user", "content": "Hi"}])

    assert [s.metadata.chunk_id for s in result.sources] == ["p1", "p2", "p3"]
    assert result.context.retrieved_docs == 3
    assert result.context.iterations == 1
    assert result.validation is not None
    assert result.context.confidence == pytest.approx(0.9 * 0.8)
    assert result.text == ANSWER
    assert [c.chunk_id for c in result.citations] == ["p1"]
    assert result.usage.total_tokens == 15

    answer_call = next(c for c in client.calls if c["route"] == "answer")
    assert "[1] Source: Return policy" in answer_call["system_prompt"]
    assert answer_call["messages"] == [
        {"role": "user", "content": "Hi"},
        {"role": "user", "content": "What is the return policy?"},
    ]

    trace = traces[0]
    assert result.trace is trace
    assert trace.error is None
    assert trace.end_time is not None
    assert [s.type for s in trace.steps] == ["query_analysis", "retrieval", "evaluation", "generation", "validation"]
    assert all(s.status == "completed" for s in trace.steps)
    assert trace.decisions == [result.context.decision]
    assert result.context.decision.processing_time_ms is not None


@pytest.mark.anyio
async def test_low_quality_triggers_exactly_one_extra_round(store, embeddings):
    traces: List[ExecutionTrace] = []
    client = _client(
        analysis=analysis_json(True, "semantic", 0.9),
        relevance=[
            relevance_json([True, True, False, True], quality=0.4, more=True),
            relevance_json([True, True, True], quality=0.1, more=True),
        ],
        expansion='["refund policy"]',
    )
    agent = _agent(client, store, embeddings, traces)

    result = await agent.execute("What is the return policy?")

    assert result.context.iterations == 2
    assert client.count("relevance") == 1
    assert client.count("expansion") == 1
    # p5 was filtered out, then found again by the follow-up round; no duplicates
    ids = [s.metadata.chunk_id for s in result.sources]
    assert ids == ["p1", "p2", "p3", "p5"]
    assert [s.type for s in traces[0].steps].count("retrieval") == 2


@pytest.mark.anyio
@pytest.mark.parametrize(
    "relevance, overrides",
    [
        (relevance_json([True] * 4, quality=0.9, more=True), {}),
        (relevance_json([True] * 4, quality=0.4, more=False), {}),
        (relevance_json([True] * 4, quality=0.4, more=True), {"max_iterations": 1}),
    ],
)
async def test_no_extra_round_unless_all_conditions_hold(store, embeddings, relevance, overrides):
    client = _client(analysis=analysis_json(True, "semantic", 0.9), relevance=relevance, expansion='["x"]')
    result = await _agent(client, store, embeddings, [], **overrides).execute("q")
    assert result.context.iterations == 1
    assert client.count("expansion") == 0


@pytest.mark.anyio
async def test_reflector_service_error_is_reraised_and_traced(store, embeddings):
    traces: List[ExecutionTrace] = []
    client = _client(
        analysis=analysis_json(True, "semantic", 0.9),
        relevance=ServiceUnavailable("network error"),
    )
    agent = _agent(client, store, embeddings, traces)

    with pytest.raises(ServiceError):
        await agent.execute("What is the return policy?")

    trace = traces[0]
    assert trace.error is not None
    assert trace.error.code == "EXECUTION_ERROR"
    assert "network error" in trace.error.message
    assert trace.error.stack
    assert trace.end_time is not None
    assert trace.steps[-1].type == "evaluation"
    assert trace.steps[-1].status == "failed"


@pytest.mark.anyio
async def test_embedding_failure_propagates(store):
    class DownEmbeddings:
        async def embed(self, text):
            raise ServiceUnavailable("embedding down")

    traces: List[ExecutionTrace] = []
    client = _client(analysis=analysis_json(True, "semantic", 0.9))
    with pytest.raises(ServiceUnavailable):
        await _agent(client, store, DownEmbeddings(), traces).execute("q")
    assert traces[0].steps[-1].type == "retrieval"
    assert client.count("answer") == 0


@pytest.mark.anyio
async def test_retrieval_with_no_hits_skips_reflection(store):
    client = _client(analysis=analysis_json(True, "semantic", 0.7))
    embeddings = FakeEmbeddingService(default=[0.0, 0.0, 1.0])
    result = await _agent(client, store, embeddings, []).execute("q")
    assert result.context.iterations == 1
    assert result.sources == []
    assert client.count("relevance") == 0
    assert client.count("validation") == 0
    assert result.context.confidence == pytest.approx(0.7)


@pytest.mark.anyio
async def test_self_reflection_disabled(store, embeddings):
    client = _client(analysis=analysis_json(True, "semantic", 0.9), relevance=relevance_json([False] * 4))
    result = await _agent(client, store, embeddings, [], enable_self_reflection=False).execute("q")
    assert len(result.sources) == 4
    assert result.validation is None
    assert client.count("relevance") == 0
    assert client.count("validation") == 0


@pytest.mark.anyio
async def test_analysis_parse_failure_retrieves_broadly(store, embeddings):
    client = _client(analysis="sure, let me look that up", relevance=relevance_json([True] * 4))
    result = await _agent(client, store, embeddings, []).execute("returns")
    assert result.context.decision.strategy == "hybrid"
    assert result.context.decision.confidence == 0.5
    assert result.context.iterations == 1
    assert result.sources


@pytest.mark.anyio
async def test_chain_of_thought_numbering(store, embeddings):
    client = _client(analysis=analysis_json(True, "semantic", 0.9), relevance=relevance_json([True] * 4))
    result = await _agent(client, store, embeddings, []).execute("q")
    steps = [s.step for s in result.context.chain_of_thought]
    assert steps == list(range(1, len(steps) + 1))
    assert len(result.context.decision.chain_of_thought) == 1


@pytest.mark.anyio
async def test_chain_of_thought_disabled(store, embeddings):
    client = _client(analysis=analysis_json(True, "semantic", 0.9), relevance=relevance_json([True] * 4))
    result = await _agent(client, store, embeddings, [], enable_chain_of_thought=False).execute("q")
    assert result.context.chain_of_thought == []
    assert result.context.decision.chain_of_thought == []


class SlowClient(FakeCompletionClient):
    async def complete(self, system_prompt, messages, temperature=0.7, max_tokens=1000):
        await asyncio.sleep(1)
        return await super().complete(system_prompt, messages, temperature, max_tokens)


@pytest.mark.anyio
async def test_timeout_raises_service_timeout(store, embeddings):
    traces: List[ExecutionTrace] = []
    client = SlowClient(analysis=analysis_json(False, "none", 0.9), answer=ANSWER)
    agent = _agent(client, store, embeddings, traces, timeout_s=0.05)

    with pytest.raises(ServiceTimeout):
        await agent.execute("q")

    trace = traces[0]
    assert trace.error.code == "EXECUTION_ERROR"
    assert trace.steps[0].status == "failed"


@pytest.mark.anyio
async def test_cancellation_finalizes_trace(store, embeddings):
    traces: List[ExecutionTrace] = []
    client = SlowClient(analysis=analysis_json(False, "none", 0.9), answer=ANSWER)
    agent = _agent(client, store, embeddings, traces)

    task = asyncio.ensure_future(agent.execute("q"))
    await asyncio.sleep(0.01)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert traces[0].error.message == "cancelled"
    assert traces[0].error.code == "EXECUTION_ERROR"
    assert traces[0].end_time is not None


@pytest.mark.anyio
async def test_conversation_memory_is_used_and_updated(store, embeddings):
    registry = ConversationRegistry()
    client = _client(analysis=analysis_json(False, "none", 0.9))
    agent = _agent(client, store, embeddings, [], registry=registry)

    await agent.execute("What is the return policy?", conversation_id="c1")
    await agent.execute("And for sale items?", conversation_id="c1")

    memory = registry.get("c1")
    assert [m.query for m in memory.state.memory] == ["What is the return policy?", "And for sale items?"]
    second_answer = [c for c in client.calls if c["route"] == "answer"][1]
    assert second_answer["messages"] == [
        {"role": "user", "content": "What is the return policy?"},
        {"role": "assistant", "content": ANSWER},
        {"role": "user", "content": "And for sale items?"},
    ]


@pytest.mark.anyio
async def test_failed_execution_is_not_remembered(store, embeddings):
    registry = ConversationRegistry()
    client = _client(analysis=ServiceUnavailable("down"))
    with pytest.raises(ServiceUnavailable):
        await _agent(client, store, embeddings, [], registry=registry).execute("q", conversation_id="c1")
    assert registry.get("c1").state.memory == []


@pytest.mark.anyio
async def test_each_call_gets_its_own_trace(store, embeddings):
    traces: List[ExecutionTrace] = []
    client = _client(analysis=analysis_json(False, "none", 0.9))
    agent = _agent(client, store, embeddings, traces)
    first, second = await asyncio.gather(agent.execute("one"), agent.execute("two"))
    assert first.trace is not second.trace
    assert {t.query for t in traces} == {"one", "two"}
    assert first.trace.trace_id != second.trace.trace_id


@pytest.mark.anyio
async def test_failing_trace_sink_keeps_original_error(store, embeddings, caplog):
    def broken_sink(trace):
        raise RuntimeError("sink down")

    client = _client(
        analysis=analysis_json(True, "semantic", 0.9),
        relevance=ServiceUnavailable("network error"),
    )
    agent = build_agent(
        RAGConfig(organization_id="org_1"),
        store,
        completion_client=client,
        aux_client=client,
        embedding_service=embeddings,
        trace_sink=broken_sink,
    )

    with pytest.raises(ServiceUnavailable, match="network error"):
        await agent.execute("What is the return policy?")
    assert "Trace sink failed" in caplog.text

    ok_client = _client(analysis=analysis_json(False, "none", 0.95))
    ok_agent = build_agent(
        RAGConfig(organization_id="org_1"),
        store,
        completion_client=ok_client,
        aux_client=ok_client,
        embedding_service=embeddings,
        trace_sink=broken_sink,
    )
    result = await ok_agent.execute("Hello")
    assert result.text == ANSWER
