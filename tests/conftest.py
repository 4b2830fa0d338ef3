"""Pytest configuration and fixtures."""

import asyncio
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from ragpipe.config.settings import Settings
from ragpipe.orchestrator.steps import ClassificationData, ConfidenceData, Hit


class TickingClock:
    """Deterministic clock that advances 10ms on every read."""

    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        self.now += timedelta(milliseconds=10)
        return self.now


class ScriptedTransport:
    """Yields a fixed list of events, then optionally raises or hangs."""

    def __init__(self, events: list[Any], fail_with: Exception | None = None, hang: bool = False):
        self.events = events
        self.fail_with = fail_with
        self.hang = hang
        self.requests: list[dict[str, Any]] = []
        self.closed = 0

    async def stream(self, request: dict[str, Any]):
        self.requests.append(request)
        try:
            for event in self.events:
                await asyncio.sleep(0)
                yield event
            if self.fail_with is not None:
                raise self.fail_with
            if self.hang:
                await asyncio.Event().wait()
        finally:
            self.closed += 1


class ControlledTransport:
    """One queue per stream; tests push events (None ends, an Exception raises)."""

    def __init__(self) -> None:
        self.queues: list[asyncio.Queue] = []
        self.requests: list[dict[str, Any]] = []
        self.closed: list[int] = []

    def stream(self, request: dict[str, Any]):
        queue: asyncio.Queue = asyncio.Queue()
        self.queues.append(queue)
        self.requests.append(request)
        return self._drain(queue, len(self.queues) - 1)

    async def _drain(self, queue: asyncio.Queue, index: int):
        try:
            while True:
                item = await queue.get()
                if item is None:
                    return
                if isinstance(item, Exception):
                    raise item
                yield item
        finally:
            self.closed.append(index)


async def settle(rounds: int = 10) -> None:
    """Let scheduled tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def make_hit(doc_id: str, score: float = 1.0) -> Hit:
    return Hit.model_validate({"_id": doc_id, "_score": score, "_source": {"title": doc_id}})


@pytest.fixture
def settings():
    """Provide settings fixture."""
    return Settings(
        backend_url="http://antfly.test/api/v1",
        default_table="docs",
        stream_retry_delay=0.01,
        strict_transitions=False,
    )


@pytest.fixture
def clock():
    return TickingClock()


@pytest.fixture
def classification_result():
    return ClassificationData(strategy="semantic", semantic_mode="rewrite", route_type="question")


@pytest.fixture
def confidence_scores():
    return ConfidenceData(generation_confidence=0.82, context_relevance=0.64)
