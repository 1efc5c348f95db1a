"""
Per-conversation memory: recent query/answer pairs, extracted entities, facts and preferences.
"""

from __future__ import annotations

import re
import time
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Literal, Optional, Tuple

from src.rag.retriever import RetrievalResult

from .query_analyzer import AgentDecision

EntityType = Literal["person", "product", "order", "location", "date", "custom"]

# (entity type, pattern, initial confidence)
_ENTITY_PATTERNS: List[Tuple[EntityType, re.Pattern, float]] = [
    ("person", re.compile(r"\b[\w.%+-]+@[\w.-]+\.[A-Z]{2,}\b", re.IGNORECASE), 0.9),
    ("person", re.compile(r"\b\d{3}[-.]?\d{3}[-.]?\d{4}\b"), 0.8),
    ("product", re.compile(r"\bPROD-[A-Z0-9]+\b", re.IGNORECASE), 0.95),
    ("order", re.compile(r"\bORD-[A-Z0-9]+\b", re.IGNORECASE), 0.95),
    ("date", re.compile(r"\b\d{1,2}[/-]\d{1,2}[/-]\d{2,4}\b"), 0.7),
]


@dataclass
class Entity:
    type: EntityType
    value: str
    confidence: float
    first_mentioned: float
    last_mentioned: float
    occurrences: int = 1
    metadata: Optional[Dict[str, Any]] = None


@dataclass
class Fact:
    key: str
    value: Any
    confidence: float
    source: str
    timestamp: float
    verified: bool = False


@dataclass
class UserFeedback:
    helpful: bool
    rating: Optional[int] = None
    comment: Optional[str] = None


@dataclass
class MemoryEntry:
    """One answered query."""

    id: str
    conversation_id: str
    query: str
    response: str
    retrieved_docs: List[RetrievalResult]
    decision: AgentDecision
    timestamp: float
    relevance_score: float
    user_feedback: Optional[UserFeedback] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "conversation_id": self.conversation_id,
            "query": self.query,
            "response": self.response,
            "retrieved_docs": [d.to_dict() for d in self.retrieved_docs],
            "decision": self.decision.to_dict(),
            "timestamp": self.timestamp,
            "relevance_score": self.relevance_score,
            "user_feedback": asdict(self.user_feedback) if self.user_feedback else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MemoryEntry":
        feedback = data.get("user_feedback")
        return cls(
            id=data["id"],
            conversation_id=data["conversation_id"],
            query=data["query"],
            response=data["response"],
            retrieved_docs=[RetrievalResult.from_dict(d) for d in data.get("retrieved_docs") or []],
            decision=AgentDecision.from_dict(data["decision"]),
            timestamp=float(data["timestamp"]),
            relevance_score=float(data.get("relevance_score", 0.0)),
            user_feedback=UserFeedback(**feedback) if feedback else None,
        )


@dataclass
class ContextMetadata:
    total_queries: int = 0
    avg_confidence: float = 0.0
    last_updated: float = 0.0


@dataclass
class ConversationContextState:
    conversation_id: str
    memory: List[MemoryEntry] = field(default_factory=list)
    entities: Dict[str, Entity] = field(default_factory=dict)
    facts: Dict[str, Fact] = field(default_factory=dict)
    preferences: Dict[str, Any] = field(default_factory=dict)
    metadata: ContextMetadata = field(default_factory=ContextMetadata)


class ConversationMemory:
    """
    Bounded memory for a single conversation.

    Not safe for concurrent mutation: callers serialize calls per conversation id.
    """

    def __init__(
        self,
        conversation_id: str,
        max_memory_entries: int = 50,
        min_relevance_score: float = 0.5,
        clock: Callable[[], float] = time.time,
    ):
        self.max_memory_entries = max_memory_entries
        self.min_relevance_score = min_relevance_score
        self._clock = clock
        self.state = ConversationContextState(
            conversation_id=conversation_id,
            metadata=ContextMetadata(last_updated=clock()),
        )

    @property
    def conversation_id(self) -> str:
        return self.state.conversation_id

    def add_memory(
        self,
        query: str,
        response: str,
        retrieved_docs: List[RetrievalResult],
        decision: AgentDecision,
    ) -> MemoryEntry:
        now = self._clock()
        entry = MemoryEntry(
            id=uuid.uuid4().hex,
            conversation_id=self.state.conversation_id,
            query=query,
            response=response,
            retrieved_docs=list(retrieved_docs),
            decision=decision,
            timestamp=now,
            relevance_score=decision.confidence,
        )
        self.state.memory.append(entry)

        meta = self.state.metadata
        meta.total_queries += 1
        meta.last_updated = now
        meta.avg_confidence = sum(m.relevance_score for m in self.state.memory) / len(self.state.memory)

        if len(self.state.memory) > self.max_memory_entries:
            self._prune()
        self._extract_entities(f"{query} {response}")
        return entry

    def get_relevant_memories(self, query: str, limit: int = 5) -> List[MemoryEntry]:
        """Memories whose text contains enough of the query's tokens, best first."""
        tokens = query.lower().split()
        if not tokens:
            return []
        scored = []
        for entry in self.state.memory:
            text = f"{entry.query} {entry.response}".lower()
            score = sum(1 for t in tokens if t in text) / len(tokens)
            if score >= self.min_relevance_score:
                scored.append((score, entry))
        scored.sort(key=lambda pair: -pair[0])
        return [entry for _, entry in scored[:limit]]

    def _extract_entities(self, text: str) -> None:
        for entity_type, pattern, confidence in _ENTITY_PATTERNS:
            for match in pattern.findall(text):
                self._add_entity(entity_type, match, confidence)

    def _add_entity(self, entity_type: EntityType, value: str, confidence: float) -> None:
        now = self._clock()
        key = f"{entity_type}:{value}"
        existing = self.state.entities.get(key)
        if existing is not None:
            existing.last_mentioned = now
            existing.occurrences += 1
            existing.confidence = min(1.0, existing.confidence + 0.1)
            return
        self.state.entities[key] = Entity(
            type=entity_type,
            value=value,
            confidence=confidence,
            first_mentioned=now,
            last_mentioned=now,
        )

    def add_fact(self, key: str, value: Any, confidence: float, source: str, verified: bool = False) -> None:
        self.state.facts[key] = Fact(
            key=key,
            value=value,
            confidence=confidence,
            source=source,
            timestamp=self._clock(),
            verified=verified,
        )

    def get_fact(self, key: str) -> Optional[Fact]:
        return self.state.facts.get(key)

    def get_entities_by_type(self, entity_type: EntityType) -> List[Entity]:
        return [e for e in self.state.entities.values() if e.type == entity_type]

    def set_preference(self, key: str, value: Any) -> None:
        self.state.preferences[key] = value
        self.state.metadata.last_updated = self._clock()

    def get_preference(self, key: str) -> Any:
        return self.state.preferences.get(key)

    def _prune(self) -> None:
        """Keep the best entries by relevance and recency, in chronological order."""
        memory = self.state.memory
        oldest = min(m.timestamp for m in memory)
        span = max(m.timestamp for m in memory) - oldest

        def keep_score(entry: MemoryEntry) -> float:
            recency = (entry.timestamp - oldest) / span if span > 0 else 1.0
            return 0.5 * entry.relevance_score + 0.5 * recency

        ranked = sorted(range(len(memory)), key=lambda i: (-keep_score(memory[i]), -i))
        keep = sorted(ranked[: self.max_memory_entries])
        self.state.memory = [memory[i] for i in keep]

    def add_feedback(
        self,
        memory_id: str,
        helpful: bool,
        rating: Optional[int] = None,
        comment: Optional[str] = None,
    ) -> bool:
        """Attach feedback and nudge the entry's relevance. Returns False for unknown ids."""
        for entry in self.state.memory:
            if entry.id == memory_id:
                entry.user_feedback = UserFeedback(helpful=helpful, rating=rating, comment=comment)
                if entry.relevance_score:
                    if helpful:
                        entry.relevance_score = min(1.0, entry.relevance_score + 0.1)
                    else:
                        entry.relevance_score = max(0.0, entry.relevance_score - 0.2)
                return True
        return False

    def get_context_summary(self) -> Dict[str, Any]:
        entities = sorted(
            self.state.entities.values(),
            key=lambda e: -(e.confidence * e.occurrences),
        )
        facts = sorted(
            (f for f in self.state.facts.values() if f.confidence > 0.7),
            key=lambda f: -f.confidence,
        )
        return {
            "recent_memories": self.state.memory[-5:],
            "key_entities": entities[:10],
            "important_facts": facts[:10],
            "preferences": dict(self.state.preferences),
            "metadata": self.state.metadata,
        }

    def get_history(self, last_n: int = 5) -> List[Dict[str, str]]:
        """Last N exchanges as role/content messages, oldest first."""
        if last_n <= 0:
            return []
        messages: List[Dict[str, str]] = []
        for entry in self.state.memory[-last_n:]:
            messages.append({"role": "user", "content": entry.query})
            messages.append({"role": "assistant", "content": entry.response})
        return messages

    def export_state(self) -> Dict[str, Any]:
        """Plain-data snapshot; entities and facts become ordered [key, value] pair lists."""
        return {
            "conversation_id": self.state.conversation_id,
            "memory": [m.to_dict() for m in self.state.memory],
            "entities": [[k, asdict(v)] for k, v in self.state.entities.items()],
            "facts": [[k, asdict(v)] for k, v in self.state.facts.items()],
            "preferences": dict(self.state.preferences),
            "metadata": asdict(self.state.metadata),
        }

    def import_state(self, data: Dict[str, Any]) -> None:
        """Inverse of export_state."""
        self.state = ConversationContextState(
            conversation_id=data["conversation_id"],
            memory=[MemoryEntry.from_dict(m) for m in data.get("memory") or []],
            entities={k: Entity(**v) for k, v in data.get("entities") or []},
            facts={k: Fact(**v) for k, v in data.get("facts") or []},
            preferences=dict(data.get("preferences") or {}),
            metadata=ContextMetadata(**(data.get("metadata") or {})),
        )

    def clear(self) -> None:
        self.state.memory = []
        self.state.entities.clear()
        self.state.facts.clear()
        self.state.preferences = {}
        self.state.metadata = ContextMetadata(last_updated=self._clock())


class ConversationRegistry:
    """Explicit conversation id -> ConversationMemory map, owned by the caller."""

    def __init__(self, max_memory_entries: int = 50, min_relevance_score: float = 0.5):
        self.max_memory_entries = max_memory_entries
        self.min_relevance_score = min_relevance_score
        self._memories: Dict[str, ConversationMemory] = {}

    def get(self, conversation_id: str) -> Optional[ConversationMemory]:
        return self._memories.get(conversation_id)

    def get_or_create(self, conversation_id: str) -> ConversationMemory:
        memory = self._memories.get(conversation_id)
        if memory is None:
            memory = ConversationMemory(
                conversation_id,
                max_memory_entries=self.max_memory_entries,
                min_relevance_score=self.min_relevance_score,
            )
            self._memories[conversation_id] = memory
        return memory

    def evict(self, conversation_id: str) -> bool:
        return self._memories.pop(conversation_id, None) is not None

    def __contains__(self, conversation_id: object) -> bool:
        return conversation_id in self._memories

    def __len__(self) -> int:
        return len(self._memories)
