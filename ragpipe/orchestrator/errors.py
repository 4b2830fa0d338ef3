"""Pipeline exceptions."""

from typing import Any


class PipelineError(Exception):
    """Base class for orchestrator errors."""


class InvalidTransitionError(PipelineError):
    """An action whose precondition does not hold for the current state."""

    def __init__(self, action: Any, reason: str) -> None:
        self.action = action
        self.reason = reason
        super().__init__(f"{type(action).__name__} rejected: {reason}")


class BackendRequestError(PipelineError):
    """The retrieval backend refused the streaming request."""

    def __init__(self, status_code: int | None, detail: str) -> None:
        self.status_code = status_code
        self.detail = detail
        if status_code is None:
            super().__init__(detail)
        else:
            super().__init__(f"Answer agent request failed: {status_code} {detail}")


class StreamInterruptedError(PipelineError):
    """The event stream ended without a done or error event."""
