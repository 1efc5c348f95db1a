"""
Tests for the in-memory knowledge store, RAG config loading and the default trace sink.
"""

from __future__ import annotations

import json
import logging

import pytest

from conftest import make_passage
from src.orchestrator.trace import ExecutionTrace, log_execution_trace
from src.rag import InMemoryKnowledgeStore, RAGConfig


@pytest.mark.anyio
async def test_keyword_search_is_case_insensitive_substring():
    store = InMemoryKnowledgeStore(
        [
            make_passage("a", None, content="Express SHIPPING is available.", title="Delivery"),
            make_passage("b", None, content="Nothing here.", title="Shipping costs"),
            make_passage("c", None, content="Unrelated."),
        ]
    )
    hits = await store.keyword_search("org_1", "shipping")
    assert [p.id for p in hits] == ["a", "b"]
    assert await store.keyword_search("org_1", "shipping", limit=1) == hits[:1]
    assert await store.keyword_search("org_1", "") == []


@pytest.mark.anyio
async def test_from_jsonl(tmp_path):
    path = tmp_path / "passages.jsonl"
    rows = [
        {"id": "p1", "knowledge_base_id": "kb", "title": "T", "content": "C", "embedding": [1, 0], "tags": ["x"]},
        {"id": "p2", "knowledge_base_id": "kb", "content": "D", "is_active": False, "created_at": "2024-05-01T10:00:00"},
    ]
    path.write_text("\n".join(json.dumps(r) for r in rows) + "\n\n", encoding="utf-8")

    store = InMemoryKnowledgeStore.from_jsonl(path, organization_id="org_9")

    assert len(store) == 2
    passages = await store.list_passages("org_9")
    assert [p.id for p in passages] == ["p1"]
    assert passages[0].embedding == [1, 0]
    assert passages[0].knowledge_base_name == "kb"


def test_from_jsonl_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        InMemoryKnowledgeStore.from_jsonl(tmp_path / "missing.jsonl")


def test_config_from_env(monkeypatch):
    monkeypatch.setenv("RAG_MAX_ITERATIONS", "5")
    monkeypatch.setenv("RAG_MIN_CONFIDENCE", "0.6")
    monkeypatch.setenv("RAG_SELF_REFLECTION", "false")
    monkeypatch.setenv("RAG_KNOWLEDGE_BASE_IDS", "kb_1, kb_2,")
    monkeypatch.setenv("RAG_TIMEOUT_S", "30")

    config = RAGConfig.from_env("org_1", temperature=0.1)

    assert config.organization_id == "org_1"
    assert config.max_iterations == 5
    assert config.min_confidence == 0.6
    assert config.enable_self_reflection is False
    assert config.knowledge_base_ids == ["kb_1", "kb_2"]
    assert config.timeout_s == 30.0
    assert config.temperature == 0.1


def test_config_defaults():
    config = RAGConfig(organization_id="org_1")
    assert (config.max_iterations, config.min_confidence) == (3, 0.7)
    assert (config.followup_limit, config.followup_min_score) == (3, 0.6)
    assert config.timeout_s is None


def test_default_trace_sink_logs_summary(caplog):
    trace = ExecutionTrace(query="Where is my order?")
    trace.think("thinking", "acting")
    trace.finish()
    with caplog.at_level(logging.INFO, logger="src.orchestrator.trace"):
        log_execution_trace(trace)
    assert trace.trace_id in caplog.text
    assert "chain_of_thought=1" in caplog.text
