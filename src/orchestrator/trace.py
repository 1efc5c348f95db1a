"""
Execution trace for one agent run: reasoning steps, decisions and chain of thought.
"""

from __future__ import annotations

import logging
import time
import traceback
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, List, Literal, Optional

if TYPE_CHECKING:
    from .agent import RAGExecutionResult
    from .query_analyzer import AgentDecision

logger = logging.getLogger(__name__)

StepType = Literal["query_analysis", "retrieval", "evaluation", "generation", "validation"]
StepStatus = Literal["pending", "in_progress", "completed", "failed"]

EXECUTION_ERROR = "EXECUTION_ERROR"


def now_ms() -> float:
    """Wall-clock time in epoch milliseconds."""
    return time.time() * 1000


@dataclass
class ChainOfThoughtStep:
    step: int
    thought: str
    action: str
    observation: Optional[str] = None
    timestamp: float = field(default_factory=now_ms)


@dataclass
class ReasoningStep:
    id: str
    type: StepType
    status: StepStatus
    start_time: float
    input: Any
    end_time: Optional[float] = None
    output: Any = None
    error: Optional[str] = None

    def complete(self, output: Any) -> None:
        self.status = "completed"
        self.end_time = now_ms()
        self.output = output

    def fail(self, error: str) -> None:
        self.status = "failed"
        self.end_time = now_ms()
        self.error = error


@dataclass
class TraceError:
    message: str
    code: str = EXECUTION_ERROR
    stack: Optional[str] = None


@dataclass
class ExecutionTrace:
    """Owned by a single execute() call; never shared between calls."""

    query: str
    trace_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    start_time: float = field(default_factory=now_ms)
    end_time: Optional[float] = None
    steps: List[ReasoningStep] = field(default_factory=list)
    decisions: List["AgentDecision"] = field(default_factory=list)
    chain_of_thought: List[ChainOfThoughtStep] = field(default_factory=list)
    result: Optional["RAGExecutionResult"] = None
    error: Optional[TraceError] = None

    def start_step(self, step_type: StepType, step_input: Any) -> ReasoningStep:
        step = ReasoningStep(
            id=uuid.uuid4().hex,
            type=step_type,
            status="in_progress",
            start_time=now_ms(),
            input=step_input,
        )
        self.steps.append(step)
        return step

    def think(self, thought: str, action: str, observation: Optional[str] = None) -> ChainOfThoughtStep:
        """Append a chain-of-thought step; step numbers increase by one per call."""
        entry = ChainOfThoughtStep(
            step=len(self.chain_of_thought) + 1,
            thought=thought,
            action=action,
            observation=observation,
        )
        self.chain_of_thought.append(entry)
        return entry

    def finish(self, result: Optional["RAGExecutionResult"] = None) -> None:
        self.end_time = now_ms()
        self.result = result

    def fail(self, error: BaseException, message: Optional[str] = None) -> None:
        """Mark in-progress steps failed and record the error with its stack."""
        text = message or str(error) or type(error).__name__
        for step in self.steps:
            if step.status == "in_progress":
                step.fail(text)
        self.end_time = now_ms()
        self.error = TraceError(
            message=text,
            code=EXECUTION_ERROR,
            stack="".join(traceback.format_exception(type(error), error, error.__traceback__)),
        )

    @property
    def duration_ms(self) -> Optional[float]:
        if self.end_time is None:
            return None
        return self.end_time - self.start_time


def log_execution_trace(trace: ExecutionTrace) -> None:
    """Default trace sink: one summary line per run."""
    logger.info(
        "Execution trace %s: query=%r duration_ms=%s steps=%s decisions=%s chain_of_thought=%s error=%s",
        trace.trace_id,
        trace.query[:80],
        round(trace.duration_ms, 1) if trace.duration_ms is not None else "in-progress",
        len(trace.steps),
        len(trace.decisions),
        len(trace.chain_of_thought),
        trace.error.message if trace.error else None,
    )
