"""Pipeline state model."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from ragpipe.config.constants import STEP_LABELS, STEP_ORDER, OverallStatus, StepId, StepStatus
from ragpipe.orchestrator.steps import StepData


class PipelineStep(BaseModel):
    """One stage of a run."""

    model_config = ConfigDict(frozen=True)

    id: StepId
    label: str
    status: StepStatus = StepStatus.PENDING
    data: StepData | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None

    @classmethod
    def pending(cls, step_id: StepId) -> "PipelineStep":
        return cls(id=step_id, label=STEP_LABELS[step_id])

    @property
    def duration_ms(self) -> float | None:
        if self.started_at is None or self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds() * 1000


class PipelineState(BaseModel):
    """Snapshot of the live run handed to the UI layer."""

    model_config = ConfigDict(frozen=True)

    steps: tuple[PipelineStep, ...] = ()
    overall_status: OverallStatus = OverallStatus.IDLE
    error: str | None = None
    run_id: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    def step(self, step_id: StepId) -> PipelineStep | None:
        """Return the step with ``step_id`` or None if it is not enabled."""
        for s in self.steps:
            if s.id == step_id:
                return s
        return None

    def data_for(self, step_id: StepId) -> StepData | None:
        s = self.step(step_id)
        return s.data if s else None

    def replace_step(self, updated: PipelineStep) -> "PipelineState":
        steps = tuple(updated if s.id == updated.id else s for s in self.steps)
        return self.model_copy(update={"steps": steps})

    @property
    def enabled_steps(self) -> tuple[StepId, ...]:
        return tuple(s.id for s in self.steps)

    @property
    def is_terminal(self) -> bool:
        return self.overall_status in (OverallStatus.COMPLETE, OverallStatus.ERROR)

    @property
    def duration_ms(self) -> float | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds() * 1000


_INITIAL_STATE = PipelineState()


def initial_state() -> PipelineState:
    """Idle state with no steps."""
    return _INITIAL_STATE


def ordered_steps(enabled: set[StepId] | frozenset[StepId] | list[StepId]) -> tuple[StepId, ...]:
    """Filter the declared step order down to ``enabled``."""
    wanted = set(enabled)
    return tuple(step_id for step_id in STEP_ORDER if step_id in wanted)
