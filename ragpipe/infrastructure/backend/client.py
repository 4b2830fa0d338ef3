"""HTTP transport for the answer agent's Server-Sent-Events stream."""

import logging
from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import aclosing
from typing import Any, Protocol

import httpx

from ragpipe.config.constants import ANSWER_AGENT_PATH, StepId
from ragpipe.config.settings import Settings
from ragpipe.infrastructure.backend.events import TERMINAL_EVENTS, BackendEvent, parse_event
from ragpipe.orchestrator.errors import BackendRequestError, StreamInterruptedError
from ragpipe.orchestrator.run_config import RunConfig
from ragpipe.utils.retry import run_with_retry

logger = logging.getLogger(__name__)


class EventTransport(Protocol):
    """Anything that turns a request body into a stream of backend events."""

    def stream(self, request: dict[str, Any]) -> AsyncGenerator[BackendEvent, None]: ...


def build_answer_request(query: str, config: RunConfig, table: str | None = None) -> dict[str, Any]:
    """Build the answer agent request body for one run."""
    steps = set(config.steps())

    generation: dict[str, Any] = {"enabled": True}
    if config.system_prompt:
        generation["system_prompt"] = config.system_prompt

    followup: dict[str, Any] = {"enabled": StepId.FOLLOWUP in steps}
    if StepId.FOLLOWUP in steps and config.followup_count:
        followup["count"] = config.followup_count

    search: dict[str, Any] = {"semantic_search": query, "limit": config.limit}
    resolved_table = config.table or table
    if resolved_table:
        search["table"] = resolved_table

    return {
        "query": query,
        "generator": config.generator_config.model_dump(exclude_none=True),
        "stream": True,
        "queries": [search],
        "steps": {
            "classification": {
                "enabled": StepId.CLASSIFICATION in steps,
                "with_reasoning": config.with_reasoning,
            },
            "generation": generation,
            "followup": followup,
            "confidence": {"enabled": StepId.CONFIDENCE in steps},
        },
    }


async def iter_sse_events(lines: AsyncIterator[str]) -> AsyncIterator[BackendEvent]:
    """Parse SSE lines into backend events.

    An event is dispatched at the blank line that ends it (or at end of
    input). Payloads that cannot be parsed are logged and skipped.
    """
    event_name = ""
    data_lines: list[str] = []

    async for raw in lines:
        line = raw.rstrip("\r")
        if not line.strip():
            if event_name and data_lines:
                event = _decode(event_name, "\n".join(data_lines))
                if event is not None:
                    yield event
            event_name = ""
            data_lines = []
            continue
        if line.startswith(":"):
            continue
        if line.startswith("event:"):
            event_name = line[len("event:"):].strip()
        elif line.startswith("data:"):
            data_lines.append(line[len("data:"):].strip())

    if event_name and data_lines:
        event = _decode(event_name, "\n".join(data_lines))
        if event is not None:
            yield event


def _decode(event_name: str, data: str) -> BackendEvent | None:
    try:
        event = parse_event(event_name, data)
    except ValueError as e:
        logger.warning("Failed to parse SSE data for '%s': %s", event_name, e)
        return None
    if event is None:
        logger.debug("Skipping unknown SSE event '%s'", event_name)
    return event


class AnswerAgentClient:
    """Streams answer agent events over HTTP."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient | None = None) -> None:
        self.settings = settings
        self._http_client = http_client
        self._url = settings.backend_url.rstrip("/") + ANSWER_AGENT_PATH

    def _headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream, application/json",
        }
        headers.update(self.settings.backend_headers)
        return headers

    def _auth(self) -> httpx.BasicAuth | None:
        if self.settings.backend_username and self.settings.backend_password:
            return httpx.BasicAuth(self.settings.backend_username, self.settings.backend_password)
        return None

    async def _open(self, client: httpx.AsyncClient, body: dict[str, Any]) -> httpx.Response:
        request = client.build_request("POST", self._url, json=body, headers=self._headers())
        response = await client.send(request, stream=True, auth=self._auth())
        if response.status_code >= 400:
            detail = (await response.aread()).decode("utf-8", errors="replace")
            await response.aclose()
            raise BackendRequestError(response.status_code, detail)
        return response

    async def stream(self, request: dict[str, Any]) -> AsyncGenerator[BackendEvent, None]:
        """Yield events until a terminal event arrives.

        Raises StreamInterruptedError when the body ends without ``done`` or
        ``error``. Connection failures are retried only while opening the
        stream, never after the first event.
        """
        if self._http_client is not None:
            async with aclosing(self._stream_with(self._http_client, request)) as events:
                async for event in events:
                    yield event
            return

        timeout = httpx.Timeout(self.settings.request_timeout, connect=self.settings.connect_timeout)
        async with httpx.AsyncClient(timeout=timeout) as client:
            async with aclosing(self._stream_with(client, request)) as events:
                async for event in events:
                    yield event

    async def _stream_with(
        self, client: httpx.AsyncClient, body: dict[str, Any]
    ) -> AsyncGenerator[BackendEvent, None]:
        response = await run_with_retry(
            lambda: self._open(client, body),
            max_retries=self.settings.stream_max_retries,
            initial_delay=self.settings.stream_retry_delay,
            backoff_factor=self.settings.retry_backoff_factor,
        )
        try:
            content_type = response.headers.get("content-type", "")
            if "application/json" in content_type:
                raise BackendRequestError(
                    None, "Backend returned a non-streaming response; expected text/event-stream"
                )
            async for event in iter_sse_events(response.aiter_lines()):
                yield event
                if isinstance(event, TERMINAL_EVENTS):
                    return
            raise StreamInterruptedError("Stream ended without a done or error event")
        finally:
            await response.aclose()
