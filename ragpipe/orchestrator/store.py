"""Holder of the live pipeline state."""

import logging
from collections.abc import Callable
from dataclasses import dataclass

from ragpipe.config.constants import StepStatus
from ragpipe.infrastructure.logging.logger import StructuredLogger
from ragpipe.orchestrator.actions import Action, Complete, Error, StepComplete, StepError
from ragpipe.orchestrator.errors import InvalidTransitionError
from ragpipe.orchestrator.reducer import reduce
from ragpipe.orchestrator.state import PipelineState, initial_state

logger = logging.getLogger(__name__)

Listener = Callable[[PipelineState], None]


@dataclass(frozen=True)
class Diagnostic:
    """A rejected action and why it was rejected."""

    action: Action
    reason: str


class PipelineStore:
    """Applies actions through ``reduce`` and re-issues each new snapshot.

    Rejected actions leave the state untouched. They are logged and kept in
    ``diagnostics``; with ``strict=True`` the ``InvalidTransitionError`` is
    re-raised to the dispatcher instead.
    """

    def __init__(self, strict: bool = False, max_diagnostics: int = 100) -> None:
        self._state = initial_state()
        self._listeners: list[Listener] = []
        self._strict = strict
        self._max_diagnostics = max_diagnostics
        self.diagnostics: list[Diagnostic] = []
        self.structured = StructuredLogger(__name__)

    @property
    def state(self) -> PipelineState:
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` and return a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def dispatch(self, action: Action) -> bool:
        """Apply ``action``. Returns False when it was rejected."""
        try:
            new_state = reduce(self._state, action)
        except InvalidTransitionError as e:
            self._record(action, e.reason)
            if self._strict:
                raise
            return False

        self._state = new_state
        self._log_transition(action, new_state)
        for listener in list(self._listeners):
            try:
                listener(new_state)
            except Exception as e:
                logger.error("State listener failed: %s", e, exc_info=True)
        return True

    def _record(self, action: Action, reason: str) -> None:
        logger.warning("Rejected %s: %s", type(action).__name__, reason)
        self.diagnostics.append(Diagnostic(action=action, reason=reason))
        if len(self.diagnostics) > self._max_diagnostics:
            del self.diagnostics[0]

    def _log_transition(self, action: Action, state: PipelineState) -> None:
        if isinstance(action, (StepComplete, StepError)):
            step = state.step(action.step_id)
            if step is None:
                return
            self.structured.log_step(
                step=step.id.value,
                state={"run_id": state.run_id, "status": step.status.value},
                duration_ms=step.duration_ms,
            )
        elif isinstance(action, Complete):
            self.structured.log_step(
                step="run",
                state={
                    "run_id": state.run_id,
                    "status": state.overall_status.value,
                    "steps": [s.id.value for s in state.steps if s.status == StepStatus.COMPLETE],
                },
                duration_ms=state.duration_ms,
            )
        elif isinstance(action, Error):
            self.structured.log_error(
                step="run", error=action.error, context={"run_id": state.run_id}
            )
