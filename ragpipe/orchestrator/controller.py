"""Owner of the single active pipeline run."""

import asyncio
import logging
import uuid
from collections.abc import Callable
from contextlib import aclosing
from datetime import UTC, datetime
from typing import Any

import httpx

from ragpipe.config.constants import TRANSPORT_LOST_MESSAGE, OverallStatus
from ragpipe.config.settings import Settings
from ragpipe.infrastructure.backend.client import EventTransport, build_answer_request
from ragpipe.orchestrator.actions import Reset, Start
from ragpipe.orchestrator.adapter import StreamEventAdapter
from ragpipe.orchestrator.errors import (
    BackendRequestError,
    InvalidTransitionError,
    PipelineError,
)
from ragpipe.orchestrator.run_config import RunConfig
from ragpipe.orchestrator.state import PipelineState
from ragpipe.orchestrator.store import Listener, PipelineStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class RunHandle:
    """Cancellation capability for one run."""

    def __init__(self, run_id: str, adapter: StreamEventAdapter) -> None:
        self.run_id = run_id
        self.adapter = adapter
        self.task: asyncio.Task[None] | None = None
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def finished(self) -> bool:
        return self.task is not None and self.task.done()

    def cancel(self) -> None:
        """Stop the run. Cancelling a finished or cancelled run is a no-op."""
        if self._cancelled:
            return
        self._cancelled = True
        self.adapter.deactivate()
        if self.task is not None and not self.task.done():
            self.task.cancel()
            logger.info("Run %s cancelled", self.run_id)

    async def wait(self) -> None:
        """Wait for the stream consumer to stop, swallowing its cancellation."""
        if self.task is None:
            return
        try:
            await self.task
        except asyncio.CancelledError:
            if not self.task.cancelled():
                raise


class RunController:
    """Starts, cancels and resets the one live run.

    ``start`` returns as soon as the request task is scheduled; backend events
    are then applied to the store from that task as they arrive.
    """

    def __init__(
        self,
        transport: EventTransport,
        settings: Settings,
        store: PipelineStore | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.transport = transport
        self.settings = settings
        self.store = store or PipelineStore(strict=settings.strict_transitions)
        self._clock = clock
        self._active: RunHandle | None = None

    @property
    def state(self) -> PipelineState:
        return self.store.state

    @property
    def active_run(self) -> RunHandle | None:
        return self._active

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        return self.store.subscribe(listener)

    def _is_active(self, handle: RunHandle) -> bool:
        return self._active is handle and not handle.cancelled

    def start(self, query: str, config: RunConfig) -> RunHandle:
        """Cancel any active run and start streaming a new one.

        Must be called from a running event loop.
        """
        self.cancel_active()
        if self.store.state.overall_status == OverallStatus.RUNNING:
            # A cancelled run never reached a terminal state.
            self.store.dispatch(Reset())

        run_id = uuid.uuid4().hex
        steps = config.steps()
        handle: RunHandle

        adapter = StreamEventAdapter(
            self.store.dispatch,
            steps,
            provider=config.generator_config.provider,
            model=config.generator_config.model,
            run_id=run_id,
            is_active=lambda: self._is_active(handle),
            clock=self._clock,
        )
        handle = RunHandle(run_id, adapter)
        self._active = handle

        logger.info(
            "Starting run %s: steps=%s limit=%s",
            run_id,
            [s.value for s in steps],
            config.limit,
        )
        self.store.dispatch(Start(enabled_steps=steps, run_id=run_id, at=self._clock()))
        adapter.begin()

        request = build_answer_request(query, config, table=self.settings.default_table or None)
        handle.task = asyncio.get_running_loop().create_task(
            self._consume(handle, request), name=f"pipeline-run-{run_id}"
        )
        return handle

    def cancel_active(self) -> None:
        if self._active is not None:
            self._active.cancel()

    def reset(self) -> None:
        """Cancel any active run and return to the idle state."""
        self.cancel_active()
        self._active = None
        self.store.dispatch(Reset())

    async def _consume(self, handle: RunHandle, request: dict[str, Any]) -> None:
        adapter = handle.adapter
        try:
            async with aclosing(self.transport.stream(request)) as events:
                async for event in events:
                    if not self._is_active(handle):
                        break
                    adapter.handle(event)
                    if adapter.terminated:
                        break
        except asyncio.CancelledError:
            logger.debug("Run %s consumer cancelled", handle.run_id)
            raise
        except InvalidTransitionError:
            # Only reachable with strict transitions enabled.
            raise
        except BackendRequestError as e:
            logger.error("Run %s: backend refused request: %s", handle.run_id, e)
            adapter.on_error(e.detail if e.status_code is None else str(e))
        except (httpx.HTTPError, PipelineError) as e:
            logger.error("Run %s: transport failure: %s", handle.run_id, e, exc_info=True)
            adapter.on_error(TRANSPORT_LOST_MESSAGE)
        except Exception as e:
            # Custom transports and httpx stream-state errors are not HTTPErrors.
            logger.error("Run %s: unexpected stream failure: %s", handle.run_id, e, exc_info=True)
            adapter.on_error(TRANSPORT_LOST_MESSAGE)
        else:
            if not adapter.terminated and self._is_active(handle):
                # Transport returned without a terminal event.
                logger.error("Run %s: stream closed without a terminal event", handle.run_id)
                adapter.on_error(TRANSPORT_LOST_MESSAGE)
