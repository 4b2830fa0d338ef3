"""Typed events emitted by the answer agent stream."""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Union

from ragpipe.config.constants import BackendEventType
from ragpipe.orchestrator.steps import ClassificationData, ConfidenceData, Hit

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClassificationEvent:
    result: ClassificationData


@dataclass(frozen=True)
class ReasoningEvent:
    text: str


@dataclass(frozen=True)
class HitsStartEvent:
    table: str | None = None
    status: int | None = None
    error: str | None = None


@dataclass(frozen=True)
class HitEvent:
    hit: Hit


@dataclass(frozen=True)
class HitsEndEvent:
    total: int | None = None
    returned: int | None = None
    took: str | None = None


@dataclass(frozen=True)
class AnswerChunkEvent:
    text: str


@dataclass(frozen=True)
class ConfidenceEvent:
    scores: ConfidenceData


@dataclass(frozen=True)
class FollowupQuestionEvent:
    text: str


@dataclass(frozen=True)
class EvalEvent:
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DoneEvent:
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ErrorEvent:
    message: str


BackendEvent = Union[
    ClassificationEvent,
    ReasoningEvent,
    HitsStartEvent,
    HitEvent,
    HitsEndEvent,
    AnswerChunkEvent,
    ConfidenceEvent,
    FollowupQuestionEvent,
    EvalEvent,
    DoneEvent,
    ErrorEvent,
]

TERMINAL_EVENTS = (DoneEvent, ErrorEvent)


def _as_text(value: Any) -> str:
    return value if isinstance(value, str) else str(value)


def _error_message(value: Any) -> str:
    if isinstance(value, dict):
        return _as_text(value.get("error") or value.get("message") or json.dumps(value))
    return _as_text(value)


def parse_event(name: str, data: str) -> BackendEvent | None:
    """Build a typed event from one SSE ``event``/``data`` pair.

    Text payloads (answer, reasoning, followup questions) arrive JSON-encoded
    so that newlines survive the SSE framing. Returns None for event names the
    orchestrator does not know. Raises ValueError when ``data`` is malformed.
    """
    try:
        event_type = BackendEventType(name)
    except ValueError:
        return None

    try:
        payload = json.loads(data) if data else None
    except json.JSONDecodeError as e:
        if event_type == BackendEventType.ERROR:
            return ErrorEvent(message=data)
        raise ValueError(f"invalid JSON in '{name}' event: {e}") from e

    try:
        if event_type == BackendEventType.CLASSIFICATION:
            return ClassificationEvent(
                result=ClassificationData.model_validate({**payload, "kind": "classification"})
            )
        if event_type == BackendEventType.REASONING:
            return ReasoningEvent(text=_as_text(payload))
        if event_type == BackendEventType.HITS_START:
            payload = payload or {}
            return HitsStartEvent(
                table=payload.get("table"),
                status=payload.get("status"),
                error=payload.get("error"),
            )
        if event_type == BackendEventType.HIT:
            return HitEvent(hit=Hit.model_validate(payload))
        if event_type == BackendEventType.HITS_END:
            payload = payload or {}
            return HitsEndEvent(
                total=payload.get("total"),
                returned=payload.get("returned"),
                took=payload.get("took"),
            )
        if event_type == BackendEventType.ANSWER:
            return AnswerChunkEvent(text=_as_text(payload))
        if event_type == BackendEventType.CONFIDENCE:
            return ConfidenceEvent(
                scores=ConfidenceData.model_validate({**payload, "kind": "confidence"})
            )
        if event_type == BackendEventType.FOLLOWUP_QUESTION:
            return FollowupQuestionEvent(text=_as_text(payload))
        if event_type == BackendEventType.EVAL:
            return EvalEvent(payload=payload if isinstance(payload, dict) else {})
        if event_type == BackendEventType.DONE:
            return DoneEvent(payload=payload if isinstance(payload, dict) else {})
        return ErrorEvent(message=_error_message(payload))
    except (TypeError, AttributeError, ValueError) as e:
        # pydantic.ValidationError is a ValueError
        raise ValueError(f"invalid '{name}' payload: {e}") from e
