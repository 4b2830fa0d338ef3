"""Pipeline state machine.

``reduce`` is a pure function: it reads no clock, performs no I/O and never
mutates its input. An action whose precondition does not hold raises
``InvalidTransitionError``; the caller decides whether that is fatal.
"""

from ragpipe.config.constants import (
    REQUIRED_STEPS,
    STEP_ORDER,
    OverallStatus,
    StepId,
    StepStatus,
)
from ragpipe.orchestrator.actions import (
    Action,
    Complete,
    Error,
    Reset,
    Start,
    StepComplete,
    StepError,
    StepStart,
    StepUpdate,
)
from ragpipe.orchestrator.errors import InvalidTransitionError
from ragpipe.orchestrator.state import (
    PipelineState,
    PipelineStep,
    initial_state,
    ordered_steps,
)
from ragpipe.orchestrator.steps import data_step_id

# Confidence and followup both follow generation but are unordered between themselves.
_UNORDERED_PAIR = frozenset({StepId.CONFIDENCE, StepId.FOLLOWUP})

_STARTABLE = (OverallStatus.IDLE, OverallStatus.COMPLETE, OverallStatus.ERROR)


def _predecessors(step_id: StepId) -> tuple[StepId, ...]:
    index = STEP_ORDER.index(step_id)
    return tuple(
        s
        for s in STEP_ORDER[:index]
        if not (s in _UNORDERED_PAIR and step_id in _UNORDERED_PAIR)
    )


def _require_running(state: PipelineState, action: Action) -> None:
    if state.overall_status != OverallStatus.RUNNING:
        raise InvalidTransitionError(
            action, f"run is {state.overall_status.value}, expected running"
        )


def _require_step(state: PipelineState, action: Action, step_id: StepId) -> PipelineStep:
    step = state.step(step_id)
    if step is None:
        raise InvalidTransitionError(action, f"step '{step_id.value}' is not enabled for this run")
    return step


def _require_step_status(
    action: Action, step: PipelineStep, expected: StepStatus
) -> None:
    if step.status != expected:
        raise InvalidTransitionError(
            action,
            f"step '{step.id.value}' is {step.status.value}, expected {expected.value}",
        )


def _require_matching_data(action: Action, step_id: StepId, data) -> None:
    if data is not None and data_step_id(data) != step_id:
        raise InvalidTransitionError(
            action,
            f"'{data_step_id(data).value}' data cannot be applied to step '{step_id.value}'",
        )


def _start(state: PipelineState, action: Start) -> PipelineState:
    if state.overall_status not in _STARTABLE:
        raise InvalidTransitionError(action, "a run is already in progress")
    missing = REQUIRED_STEPS - set(action.enabled_steps)
    if missing:
        names = ", ".join(sorted(s.value for s in missing))
        raise InvalidTransitionError(action, f"required steps missing: {names}")

    steps = tuple(PipelineStep.pending(step_id) for step_id in ordered_steps(action.enabled_steps))
    return PipelineState(
        steps=steps,
        overall_status=OverallStatus.RUNNING,
        run_id=action.run_id,
        started_at=action.at,
    )


def _step_start(state: PipelineState, action: StepStart) -> PipelineState:
    _require_running(state, action)
    step = _require_step(state, action, action.step_id)
    _require_step_status(action, step, StepStatus.PENDING)

    blocked_by = [
        s.value
        for s in _predecessors(action.step_id)
        if (prior := state.step(s)) is not None and prior.status == StepStatus.PENDING
    ]
    if blocked_by:
        raise InvalidTransitionError(
            action,
            f"step '{action.step_id.value}' cannot start before {', '.join(blocked_by)}",
        )

    return state.replace_step(
        step.model_copy(update={"status": StepStatus.RUNNING, "started_at": action.at})
    )


def _step_update(state: PipelineState, action: StepUpdate) -> PipelineState:
    _require_running(state, action)
    step = _require_step(state, action, action.step_id)
    _require_step_status(action, step, StepStatus.RUNNING)
    _require_matching_data(action, action.step_id, action.data)
    return state.replace_step(step.model_copy(update={"data": action.data}))


def _step_complete(state: PipelineState, action: StepComplete) -> PipelineState:
    _require_running(state, action)
    step = _require_step(state, action, action.step_id)
    _require_step_status(action, step, StepStatus.RUNNING)
    _require_matching_data(action, action.step_id, action.data)
    return state.replace_step(
        step.model_copy(
            update={
                "status": StepStatus.COMPLETE,
                "completed_at": action.at,
                "data": action.data if action.data is not None else step.data,
            }
        )
    )


def _step_error(state: PipelineState, action: StepError) -> PipelineState:
    _require_running(state, action)
    step = _require_step(state, action, action.step_id)
    _require_step_status(action, step, StepStatus.RUNNING)
    return state.replace_step(
        step.model_copy(
            update={
                "status": StepStatus.ERROR,
                "completed_at": action.at,
                "error": action.error,
            }
        )
    )


def _error(state: PipelineState, action: Error) -> PipelineState:
    _require_running(state, action)
    # Running steps stay running: their outcome is indeterminate, not failed.
    return state.model_copy(
        update={
            "overall_status": OverallStatus.ERROR,
            "error": action.error,
            "finished_at": action.at,
        }
    )


def _complete(state: PipelineState, action: Complete) -> PipelineState:
    _require_running(state, action)
    return state.model_copy(
        update={"overall_status": OverallStatus.COMPLETE, "finished_at": action.at}
    )


def reduce(state: PipelineState, action: Action) -> PipelineState:
    """Return the state that results from applying ``action`` to ``state``."""
    if isinstance(action, Reset):
        return initial_state()
    if isinstance(action, Start):
        return _start(state, action)
    if isinstance(action, StepStart):
        return _step_start(state, action)
    if isinstance(action, StepUpdate):
        return _step_update(state, action)
    if isinstance(action, StepComplete):
        return _step_complete(state, action)
    if isinstance(action, StepError):
        return _step_error(state, action)
    if isinstance(action, Error):
        return _error(state, action)
    if isinstance(action, Complete):
        return _complete(state, action)
    raise InvalidTransitionError(action, "unknown action")
