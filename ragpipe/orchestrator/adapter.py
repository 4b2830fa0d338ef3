"""Translate answer-agent stream events into reducer actions.

The backend only marks classification, confidence and the end of the stream
explicitly. Search and generation boundaries are inferred here:

- the first answer chunk means retrieval is over, so search is completed
  exactly once (guarded by ``search_completed``) before generation starts;
- ``done`` completes whatever is still open, in declared step order, before
  the run itself is completed.

One adapter serves exactly one run. Its buffers are rebuilt into immutable
snapshots on every update, and once the run is terminated or the adapter is
deactivated every handler becomes a no-op.
"""

import logging
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import Any

from ragpipe.config.constants import StepId
from ragpipe.infrastructure.backend.events import (
    AnswerChunkEvent,
    BackendEvent,
    ClassificationEvent,
    ConfidenceEvent,
    DoneEvent,
    ErrorEvent,
    EvalEvent,
    FollowupQuestionEvent,
    HitEvent,
    HitsEndEvent,
    HitsStartEvent,
    ReasoningEvent,
)
from ragpipe.orchestrator.actions import (
    Action,
    Complete,
    Error,
    StepComplete,
    StepStart,
    StepUpdate,
)
from ragpipe.orchestrator.steps import (
    ClassificationData,
    ConfidenceData,
    FollowupData,
    GenerationData,
    Hit,
    SearchData,
    StepData,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class StreamEventAdapter:
    """Per-run translator from backend events to pipeline actions."""

    def __init__(
        self,
        dispatch: Callable[[Action], Any],
        enabled_steps: Iterable[StepId],
        *,
        provider: str | None = None,
        model: str | None = None,
        run_id: str | None = None,
        is_active: Callable[[], bool] | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._dispatch = dispatch
        self._enabled = frozenset(enabled_steps)
        self._provider = provider
        self._model = model
        self.run_id = run_id
        self._is_active = is_active or (lambda: True)
        self._clock = clock

        self._hits: list[Hit] = []
        self._search_total: int | None = None
        self._search_took: str | None = None
        self._answer = ""
        self._followups: list[str] = []
        self._reasoning = ""

        self._started: set[StepId] = set()
        self._completed: set[StepId] = set()
        self.search_completed = False
        self.followup_started = False
        self.terminated = False
        self._deactivated = False

    # ------------------------------------------------------------------
    # Guards and bookkeeping
    # ------------------------------------------------------------------

    @property
    def accepting(self) -> bool:
        return not self.terminated and not self._deactivated and self._is_active()

    def deactivate(self) -> None:
        """Drop every later event. Safe to call more than once."""
        self._deactivated = True

    def _emit(self, action: Action) -> None:
        if self._deactivated or not self._is_active():
            logger.debug("Dropping %s for inactive run %s", type(action).__name__, self.run_id)
            return
        self._dispatch(action)

    def _start(self, step_id: StepId) -> None:
        self._started.add(step_id)
        self._emit(StepStart(step_id=step_id, at=self._clock()))

    def _complete(self, step_id: StepId, data: StepData | None) -> None:
        self._started.add(step_id)
        self._completed.add(step_id)
        self._emit(StepComplete(step_id=step_id, at=self._clock(), data=data))

    def _enabled_or_warn(self, step_id: StepId, event: str) -> bool:
        if step_id in self._enabled:
            return True
        logger.warning(
            "Ignoring %s event for run %s: step '%s' is not enabled",
            event,
            self.run_id,
            step_id.value,
        )
        return False

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def _search_data(self, hits: tuple[Hit, ...] | None = None) -> SearchData:
        return SearchData(
            hits=tuple(self._hits) if hits is None else hits,
            total=self._search_total,
            took=self._search_took,
        )

    def _generation_data(self) -> GenerationData:
        return GenerationData(
            answer_text=self._answer, provider=self._provider, model=self._model
        )

    def _followup_data(self) -> FollowupData:
        return FollowupData(questions=tuple(self._followups))

    # ------------------------------------------------------------------
    # Step sequencing
    # ------------------------------------------------------------------

    def _advance_to_search(self) -> None:
        if StepId.SEARCH in self._started:
            return
        if StepId.CLASSIFICATION in self._enabled and StepId.CLASSIFICATION not in self._completed:
            # Classification never reported; close it without a result.
            if StepId.CLASSIFICATION not in self._started:
                self._start(StepId.CLASSIFICATION)
            self._complete(StepId.CLASSIFICATION, None)
        self._start(StepId.SEARCH)

    def _finish_search(self) -> None:
        if self.search_completed:
            return
        self._advance_to_search()
        self.search_completed = True
        self._complete(StepId.SEARCH, self._search_data())

    def _advance_to_generation(self) -> None:
        if StepId.GENERATION in self._started:
            return
        self._finish_search()
        self._start(StepId.GENERATION)

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def begin(self) -> None:
        """Mark the first step of the run as running."""
        if not self.accepting:
            return
        if StepId.CLASSIFICATION in self._enabled:
            self._start(StepId.CLASSIFICATION)
        else:
            self._start(StepId.SEARCH)

    def on_classification(self, result: ClassificationData) -> None:
        if not self.accepting or not self._enabled_or_warn(StepId.CLASSIFICATION, "classification"):
            return
        if StepId.CLASSIFICATION in self._completed:
            # Duplicate result; let the reducer reject it so it is visible.
            self._emit(StepComplete(step_id=StepId.CLASSIFICATION, at=self._clock(), data=result))
            return
        if self._reasoning and not result.reasoning:
            result = result.model_copy(update={"reasoning": self._reasoning})
        if StepId.CLASSIFICATION not in self._started:
            self._start(StepId.CLASSIFICATION)
        self._complete(StepId.CLASSIFICATION, result)
        self._start(StepId.SEARCH)

    def on_reasoning(self, text: str) -> None:
        if not self.accepting:
            return
        if StepId.CLASSIFICATION not in self._enabled or StepId.CLASSIFICATION in self._completed:
            logger.debug("Discarding reasoning chunk outside classification for run %s", self.run_id)
            return
        self._reasoning += text

    def on_hits_start(
        self, table: str | None = None, status: int | None = None, error: str | None = None
    ) -> None:
        if not self.accepting:
            return
        if error:
            logger.warning(
                "Run %s: retrieval on table=%s reported status=%s: %s",
                self.run_id,
                table,
                status,
                error,
            )
            return
        logger.debug("Run %s: retrieval started on table=%s status=%s", self.run_id, table, status)

    def on_hit(self, hit: Hit) -> None:
        if not self.accepting:
            return
        if self.search_completed:
            logger.warning("Run %s: hit %s arrived after search completed", self.run_id, hit.id)
            self._emit(
                StepUpdate(step_id=StepId.SEARCH, data=self._search_data((*self._hits, hit)))
            )
            return
        self._advance_to_search()
        self._hits.append(hit)
        self._emit(StepUpdate(step_id=StepId.SEARCH, data=self._search_data()))

    def on_hits_end(
        self, total: int | None = None, took: str | None = None, returned: int | None = None
    ) -> None:
        if not self.accepting or self.search_completed:
            return
        logger.debug(
            "Run %s: retrieval finished, %s of %s hits returned in %s",
            self.run_id,
            returned,
            total,
            took,
        )
        self._advance_to_search()
        self._search_total = total
        self._search_took = took
        self._emit(StepUpdate(step_id=StepId.SEARCH, data=self._search_data()))

    def on_answer_chunk(self, text: str) -> None:
        if not self.accepting:
            return
        self._advance_to_generation()
        self._answer += text
        self._emit(StepUpdate(step_id=StepId.GENERATION, data=self._generation_data()))

    def on_followup_question(self, text: str) -> None:
        if not self.accepting or not self._enabled_or_warn(StepId.FOLLOWUP, "followup_question"):
            return
        self._advance_to_generation()
        if not self.followup_started:
            self.followup_started = True
            self._start(StepId.FOLLOWUP)
        self._followups.append(text)
        self._emit(StepUpdate(step_id=StepId.FOLLOWUP, data=self._followup_data()))

    def on_confidence(self, scores: ConfidenceData) -> None:
        if not self.accepting or not self._enabled_or_warn(StepId.CONFIDENCE, "confidence"):
            return
        self._advance_to_generation()
        if StepId.CONFIDENCE not in self._started:
            self._start(StepId.CONFIDENCE)
        self._complete(StepId.CONFIDENCE, scores)

    def on_done(self) -> None:
        """Close every open step in declared order, then complete the run."""
        if not self.accepting:
            return
        self._advance_to_generation()
        if StepId.GENERATION not in self._completed:
            self._complete(StepId.GENERATION, self._generation_data())
        for step_id, data in (
            (StepId.CONFIDENCE, None),
            (StepId.FOLLOWUP, self._followup_data()),
        ):
            if step_id not in self._enabled or step_id in self._completed:
                continue
            if step_id not in self._started:
                self._start(step_id)
            self._complete(step_id, data)
        self._emit(Complete(at=self._clock()))
        self.terminated = True

    def on_error(self, message: str) -> None:
        if not self.accepting:
            return
        self._emit(Error(error=message, at=self._clock()))
        self.terminated = True

    def handle(self, event: BackendEvent) -> None:
        """Route one backend event to its handler."""
        if isinstance(event, ClassificationEvent):
            self.on_classification(event.result)
        elif isinstance(event, ReasoningEvent):
            self.on_reasoning(event.text)
        elif isinstance(event, HitsStartEvent):
            self.on_hits_start(event.table, event.status, event.error)
        elif isinstance(event, HitEvent):
            self.on_hit(event.hit)
        elif isinstance(event, HitsEndEvent):
            self.on_hits_end(event.total, event.took, event.returned)
        elif isinstance(event, AnswerChunkEvent):
            self.on_answer_chunk(event.text)
        elif isinstance(event, FollowupQuestionEvent):
            self.on_followup_question(event.text)
        elif isinstance(event, ConfidenceEvent):
            self.on_confidence(event.scores)
        elif isinstance(event, EvalEvent):
            logger.debug("Run %s: eval result %s", self.run_id, event.payload)
        elif isinstance(event, DoneEvent):
            self.on_done()
        elif isinstance(event, ErrorEvent):
            self.on_error(event.message)
        else:
            logger.warning("Run %s: unhandled event %r", self.run_id, event)
