"""
Constants, enums, and static values.
"""

from enum import Enum


class StepId(str, Enum):
    """Pipeline steps, in their fixed declared order."""

    CLASSIFICATION = "classification"
    SEARCH = "search"
    GENERATION = "generation"
    CONFIDENCE = "confidence"
    FOLLOWUP = "followup"


class StepStatus(str, Enum):
    """Status of a single pipeline step."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETE = "complete"
    ERROR = "error"


class OverallStatus(str, Enum):
    """Status of the whole run."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETE = "complete"
    ERROR = "error"


class BackendEventType(str, Enum):
    """SSE event names emitted by the answer agent."""

    CLASSIFICATION = "classification"
    REASONING = "reasoning"
    HITS_START = "hits_start"
    HIT = "hit"
    HITS_END = "hits_end"
    ANSWER = "answer"
    CONFIDENCE = "confidence"
    FOLLOWUP_QUESTION = "followup_question"
    EVAL = "eval"
    DONE = "done"
    ERROR = "error"


STEP_ORDER: tuple[StepId, ...] = (
    StepId.CLASSIFICATION,
    StepId.SEARCH,
    StepId.GENERATION,
    StepId.CONFIDENCE,
    StepId.FOLLOWUP,
)

STEP_LABELS: dict[StepId, str] = {
    StepId.CLASSIFICATION: "Classification",
    StepId.SEARCH: "Search",
    StepId.GENERATION: "Generation",
    StepId.CONFIDENCE: "Confidence",
    StepId.FOLLOWUP: "Follow-up Questions",
}

# Always part of a run regardless of the requested step set.
REQUIRED_STEPS: frozenset[StepId] = frozenset({StepId.SEARCH, StepId.GENERATION})

# Generic message for a stream that dies without a terminal event.
TRANSPORT_LOST_MESSAGE = "Connection to the retrieval backend was lost"

ANSWER_AGENT_PATH = "/agents/answer"
