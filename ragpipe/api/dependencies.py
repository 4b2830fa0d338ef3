"""FastAPI dependencies."""

from functools import lru_cache

from ragpipe.config.settings import get_settings
from ragpipe.infrastructure.backend.client import AnswerAgentClient
from ragpipe.orchestrator.controller import RunController


@lru_cache
def get_run_controller() -> RunController:
    """The process-wide run controller backing the console session."""
    settings = get_settings()
    return RunController(AnswerAgentClient(settings), settings)
