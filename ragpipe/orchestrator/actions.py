"""Reducer actions."""

from dataclasses import dataclass
from datetime import datetime
from typing import Union

from ragpipe.config.constants import StepId
from ragpipe.orchestrator.steps import StepData


@dataclass(frozen=True)
class Start:
    enabled_steps: tuple[StepId, ...]
    run_id: str | None = None
    at: datetime | None = None


@dataclass(frozen=True)
class StepStart:
    step_id: StepId
    at: datetime


@dataclass(frozen=True)
class StepUpdate:
    step_id: StepId
    data: StepData


@dataclass(frozen=True)
class StepComplete:
    step_id: StepId
    at: datetime
    data: StepData | None = None


@dataclass(frozen=True)
class StepError:
    step_id: StepId
    error: str
    at: datetime


@dataclass(frozen=True)
class Error:
    error: str
    at: datetime | None = None


@dataclass(frozen=True)
class Complete:
    at: datetime | None = None


@dataclass(frozen=True)
class Reset:
    pass


Action = Union[Start, StepStart, StepUpdate, StepComplete, StepError, Error, Complete, Reset]
