"""Pipeline run and health endpoints."""

import asyncio
import logging
from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from ragpipe.api.dependencies import get_run_controller
from ragpipe.api.models import HealthResponse, StartRunRequest, StartRunResponse
from ragpipe.config.settings import Settings, get_settings
from ragpipe.orchestrator.controller import RunController
from ragpipe.orchestrator.errors import InvalidTransitionError, PipelineError
from ragpipe.orchestrator.run_config import RunConfig
from ragpipe.orchestrator.state import PipelineState

logger = logging.getLogger(__name__)

router = APIRouter()


def _sse(state: PipelineState) -> str:
    return f"event: state\ndata: {state.model_dump_json(by_alias=True)}\n\n"


def _offer_latest(queue: asyncio.Queue[PipelineState], state: PipelineState) -> None:
    """Keep only the newest snapshot; each one is a full state."""
    if queue.full():
        queue.get_nowait()
    queue.put_nowait(state)


@router.post("/pipeline/runs", response_model=StartRunResponse)
async def start_run(
    request: StartRunRequest,
    settings: Settings = Depends(get_settings),
    controller: RunController = Depends(get_run_controller),
) -> StartRunResponse:
    """Start a run for ``query``, cancelling the active one if any."""
    config = request.config or RunConfig.from_settings(settings)
    try:
        handle = controller.start(request.query, config)
    except InvalidTransitionError as e:
        logger.warning("Run start rejected: %s", e)
        raise HTTPException(status_code=409, detail=e.reason) from e
    except PipelineError as e:
        logger.error("Error starting run: %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error") from e
    return StartRunResponse(run_id=handle.run_id, state=controller.state)


@router.post("/pipeline/reset", response_model=PipelineState)
async def reset_pipeline(
    controller: RunController = Depends(get_run_controller),
) -> PipelineState:
    """Cancel the active run and return to idle."""
    controller.reset()
    return controller.state


@router.get("/pipeline/state", response_model=PipelineState)
async def get_state(
    controller: RunController = Depends(get_run_controller),
) -> PipelineState:
    """Current pipeline snapshot."""
    return controller.state


@router.get("/pipeline/stream", response_class=StreamingResponse)
async def stream_state(
    until_terminal: bool = False,
    controller: RunController = Depends(get_run_controller),
) -> StreamingResponse:
    """Stream a snapshot after every transition as Server-Sent Events.

    The current snapshot is sent first. With ``until_terminal`` the stream
    closes once the run completes or fails.
    """
    queue: asyncio.Queue[PipelineState] = asyncio.Queue(maxsize=1)
    unsubscribe = controller.subscribe(lambda state: _offer_latest(queue, state))

    async def generate() -> AsyncIterator[str]:
        try:
            state = controller.state
            yield _sse(state)
            while not (until_terminal and state.is_terminal):
                state = await queue.get()
                yield _sse(state)
        finally:
            unsubscribe()

    return StreamingResponse(
        generate(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.get("/health", response_model=HealthResponse)
async def health(settings: Settings = Depends(get_settings)) -> HealthResponse:
    """Health check."""
    return HealthResponse(status="healthy", version=settings.app_version)
