from .client import AnswerAgentClient, EventTransport, build_answer_request, iter_sse_events
from .events import BackendEvent, parse_event

__all__ = [
    "AnswerAgentClient",
    "BackendEvent",
    "EventTransport",
    "build_answer_request",
    "iter_sse_events",
    "parse_event",
]
