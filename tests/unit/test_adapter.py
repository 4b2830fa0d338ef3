"""Tests for the stream event adapter."""

import logging

import pytest

from ragpipe.config.constants import OverallStatus, StepId, StepStatus
from ragpipe.infrastructure.backend.events import (
    AnswerChunkEvent,
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
from ragpipe.orchestrator.actions import Start, StepComplete, StepUpdate
from ragpipe.orchestrator.adapter import StreamEventAdapter
from ragpipe.orchestrator.state import ordered_steps
from ragpipe.orchestrator.steps import ClassificationData, GenerationData
from ragpipe.orchestrator.store import PipelineStore
from tests.conftest import make_hit


class Harness:
    """A store plus an adapter wired to it, recording every action."""

    def __init__(self, steps, clock, is_active=None):
        self.store = PipelineStore()
        self.actions = []
        enabled = ordered_steps(set(steps))
        self.store.dispatch(Start(enabled_steps=enabled, run_id="run-1", at=clock()))
        self.adapter = StreamEventAdapter(
            self.dispatch,
            enabled,
            provider="openai",
            model="gpt-4o-mini",
            run_id="run-1",
            is_active=is_active,
            clock=clock,
        )
        self.adapter.begin()

    def dispatch(self, action):
        self.actions.append(action)
        return self.store.dispatch(action)

    @property
    def state(self):
        return self.store.state

    def status(self, step_id):
        return self.state.step(step_id).status


BASIC = (StepId.SEARCH, StepId.GENERATION)


# =============================================================================
# End-to-end event sequences
# =============================================================================


def test_basic_run_streams_hits_and_answer(clock):
    """Hits then answer chunks then done produce a complete two-step run."""
    h = Harness(BASIC, clock)

    h.adapter.on_hit(make_hit("h1"))
    h.adapter.on_hit(make_hit("h2"))
    h.adapter.on_answer_chunk("Hello")
    h.adapter.on_answer_chunk(" world")
    h.adapter.on_done()

    state = h.state
    assert state.overall_status == OverallStatus.COMPLETE
    assert [hit.id for hit in state.data_for(StepId.SEARCH).hits] == ["h1", "h2"]
    generation = state.data_for(StepId.GENERATION)
    assert generation.answer_text == "Hello world"
    assert generation.provider == "openai"
    assert generation.model == "gpt-4o-mini"
    assert all(s.status == StepStatus.COMPLETE for s in state.steps)
    assert h.store.diagnostics == []


def test_run_with_classification_and_confidence(clock, classification_result, confidence_scores):
    """Classification and confidence are completed from their own events."""
    h = Harness((*BASIC, StepId.CLASSIFICATION, StepId.CONFIDENCE), clock)
    assert h.status(StepId.CLASSIFICATION) == StepStatus.RUNNING

    h.adapter.on_classification(classification_result)
    assert h.status(StepId.CLASSIFICATION) == StepStatus.COMPLETE
    assert h.status(StepId.SEARCH) == StepStatus.RUNNING

    h.adapter.on_hit(make_hit("a"))
    h.adapter.on_answer_chunk("Answer")
    h.adapter.on_confidence(confidence_scores)
    h.adapter.on_done()

    state = h.state
    assert state.overall_status == OverallStatus.COMPLETE
    assert state.data_for(StepId.CLASSIFICATION) == classification_result
    assert state.data_for(StepId.CONFIDENCE) == confidence_scores
    assert all(s.status == StepStatus.COMPLETE for s in state.steps)
    assert h.store.diagnostics == []


def test_followup_questions_accumulate_in_order(clock):
    """Each follow-up question extends the list."""
    h = Harness((*BASIC, StepId.FOLLOWUP), clock)

    h.adapter.on_hit(make_hit("a"))
    h.adapter.on_answer_chunk("Answer")
    h.adapter.on_followup_question("What next?")
    assert h.status(StepId.FOLLOWUP) == StepStatus.RUNNING
    h.adapter.on_followup_question("Why?")
    h.adapter.on_done()

    assert h.state.data_for(StepId.FOLLOWUP).questions == ("What next?", "Why?")
    assert h.status(StepId.FOLLOWUP) == StepStatus.COMPLETE
    assert h.state.overall_status == OverallStatus.COMPLETE


def test_error_mid_generation_keeps_partial_results(clock):
    """A backend error fails the run but leaves generation running."""
    h = Harness(BASIC, clock)

    h.adapter.on_hit(make_hit("a"))
    h.adapter.on_answer_chunk("Partial")
    h.adapter.on_error("Network timeout")

    state = h.state
    assert state.overall_status == OverallStatus.ERROR
    assert state.error == "Network timeout"
    assert h.status(StepId.SEARCH) == StepStatus.COMPLETE
    assert h.status(StepId.GENERATION) == StepStatus.RUNNING
    assert state.data_for(StepId.GENERATION).answer_text == "Partial"
    assert h.adapter.terminated


def test_handle_routes_typed_events(clock, classification_result, confidence_scores):
    """handle() dispatches each event type to its handler."""
    h = Harness(
        (*BASIC, StepId.CLASSIFICATION, StepId.CONFIDENCE, StepId.FOLLOWUP), clock
    )
    events = [
        ReasoningEvent(text="thinking"),
        ClassificationEvent(result=classification_result),
        HitsStartEvent(table="docs", status=200),
        HitEvent(hit=make_hit("a")),
        HitsEndEvent(total=12, returned=1, took="4ms"),
        AnswerChunkEvent(text="Hi"),
        ConfidenceEvent(scores=confidence_scores),
        FollowupQuestionEvent(text="More?"),
        EvalEvent(payload={"score": 1}),
        DoneEvent(),
    ]
    for event in events:
        h.adapter.handle(event)

    state = h.state
    assert state.overall_status == OverallStatus.COMPLETE
    assert state.data_for(StepId.SEARCH).total == 12
    assert state.data_for(StepId.FOLLOWUP).questions == ("More?",)
    assert h.store.diagnostics == []


def test_handle_error_event(clock):
    """An ErrorEvent fails the run with its message."""
    h = Harness(BASIC, clock)
    h.adapter.handle(ErrorEvent(message="table not found"))
    assert h.state.overall_status == OverallStatus.ERROR
    assert h.state.error == "table not found"


# =============================================================================
# Inferred boundaries
# =============================================================================


def test_answer_without_hits_completes_empty_search(clock):
    """Zero hits still produces a completed search step."""
    h = Harness(BASIC, clock)
    h.adapter.on_answer_chunk("No sources")

    search = h.state.step(StepId.SEARCH)
    assert search.status == StepStatus.COMPLETE
    assert search.data.hits == ()


def test_search_completed_exactly_once(clock):
    """Only the first answer chunk completes search."""
    h = Harness(BASIC, clock)
    h.adapter.on_hit(make_hit("a"))
    for chunk in ("a", "b", "c"):
        h.adapter.on_answer_chunk(chunk)
    h.adapter.on_done()

    search_completes = [
        a for a in h.actions if isinstance(a, StepComplete) and a.step_id == StepId.SEARCH
    ]
    assert len(search_completes) == 1
    assert h.adapter.search_completed


def test_answer_updates_extend_previous_text(clock):
    """Every generation update is a prefix-extension of the last one."""
    h = Harness(BASIC, clock)
    for chunk in ("The ", "quick ", "fox"):
        h.adapter.on_answer_chunk(chunk)

    texts = [
        a.data.answer_text
        for a in h.actions
        if isinstance(a, StepUpdate) and isinstance(a.data, GenerationData)
    ]
    assert texts == ["The ", "The quick ", "The quick fox"]
    for previous, current in zip(texts, texts[1:]):
        assert current.startswith(previous)


def test_done_completes_steps_that_never_reported(clock):
    """Done closes confidence and followup even without their events."""
    h = Harness((*BASIC, StepId.CONFIDENCE, StepId.FOLLOWUP), clock)
    h.adapter.on_answer_chunk("Answer")
    h.adapter.on_done()

    state = h.state
    assert state.overall_status == OverallStatus.COMPLETE
    assert all(s.status == StepStatus.COMPLETE for s in state.steps)
    assert state.data_for(StepId.CONFIDENCE) is None
    assert state.data_for(StepId.FOLLOWUP).questions == ()


def test_done_without_answer_completes_every_step(clock):
    """Done as the only event still completes the whole run."""
    h = Harness((*BASIC, StepId.CLASSIFICATION), clock)
    h.adapter.on_done()

    assert h.state.overall_status == OverallStatus.COMPLETE
    assert all(s.status == StepStatus.COMPLETE for s in h.state.steps)
    assert h.state.data_for(StepId.GENERATION).answer_text == ""
    assert h.store.diagnostics == []


def test_missing_classification_is_closed_when_search_begins(clock):
    """If classification never arrives it completes without data."""
    h = Harness((*BASIC, StepId.CLASSIFICATION), clock)
    h.adapter.on_hit(make_hit("a"))

    assert h.status(StepId.CLASSIFICATION) == StepStatus.COMPLETE
    assert h.state.data_for(StepId.CLASSIFICATION) is None
    assert h.status(StepId.SEARCH) == StepStatus.RUNNING


def test_reasoning_is_merged_into_classification(clock):
    """Streamed reasoning is attached to the classification result."""
    h = Harness((*BASIC, StepId.CLASSIFICATION), clock)
    h.adapter.on_reasoning("Looks like ")
    h.adapter.on_reasoning("a definition question")
    h.adapter.on_classification(ClassificationData(strategy="semantic"))

    result = h.state.data_for(StepId.CLASSIFICATION)
    assert result.reasoning == "Looks like a definition question"
    assert result.strategy == "semantic"


def test_hits_end_records_search_metadata(clock):
    """hits_end sets total and took without completing search."""
    h = Harness(BASIC, clock)
    h.adapter.on_hit(make_hit("a"))
    h.adapter.on_hits_end(total=40, took="12ms")

    search = h.state.step(StepId.SEARCH)
    assert search.status == StepStatus.RUNNING
    assert search.data.total == 40
    assert search.data.took == "12ms"


# =============================================================================
# Anomalies
# =============================================================================


def test_hit_after_search_completed_is_rejected(clock):
    """Late hits do not change the completed search."""
    h = Harness(BASIC, clock)
    h.adapter.on_hit(make_hit("a"))
    h.adapter.on_answer_chunk("Answer")
    h.adapter.on_hit(make_hit("late"))

    assert [hit.id for hit in h.state.data_for(StepId.SEARCH).hits] == ["a"]
    assert len(h.store.diagnostics) == 1


def test_duplicate_classification_is_rejected(clock, classification_result):
    """A second classification result is recorded as a rejected action."""
    h = Harness((*BASIC, StepId.CLASSIFICATION), clock)
    h.adapter.on_classification(classification_result)
    h.adapter.on_classification(ClassificationData(strategy="keyword"))

    assert h.state.data_for(StepId.CLASSIFICATION) == classification_result
    assert len(h.store.diagnostics) == 1


def test_events_for_disabled_steps_are_ignored(clock, confidence_scores):
    """Confidence and followup events are dropped when not enabled."""
    h = Harness(BASIC, clock)
    h.adapter.on_answer_chunk("Answer")
    count = len(h.actions)

    h.adapter.on_confidence(confidence_scores)
    h.adapter.on_followup_question("Ignored?")

    assert len(h.actions) == count
    assert h.state.enabled_steps == BASIC


@pytest.mark.parametrize("terminal", ["done", "error"])
def test_events_after_terminal_are_ignored(clock, terminal):
    """Nothing is dispatched once the run has terminated."""
    h = Harness(BASIC, clock)
    h.adapter.on_answer_chunk("Answer")
    if terminal == "done":
        h.adapter.on_done()
    else:
        h.adapter.on_error("boom")
    final = h.state
    count = len(h.actions)

    h.adapter.on_answer_chunk(" more")
    h.adapter.on_done()
    h.adapter.on_error("again")

    assert len(h.actions) == count
    assert h.state is final


def test_deactivated_adapter_dispatches_nothing(clock):
    """A deactivated adapter drops every event."""
    h = Harness(BASIC, clock)
    count = len(h.actions)
    h.adapter.deactivate()
    h.adapter.deactivate()

    h.adapter.on_hit(make_hit("a"))
    h.adapter.on_answer_chunk("x")
    h.adapter.on_done()

    assert len(h.actions) == count
    assert h.state.overall_status == OverallStatus.RUNNING


def test_inactive_run_dispatches_nothing(clock):
    """Events are dropped when the run is no longer the active one."""
    active = {"value": True}
    h = Harness(BASIC, clock, is_active=lambda: active["value"])
    h.adapter.on_hit(make_hit("a"))
    count = len(h.actions)

    active["value"] = False
    h.adapter.on_answer_chunk("stale")

    assert len(h.actions) == count


def test_steps_start_in_declared_order(clock, classification_result):
    """Classification starts before search, and search before generation."""
    h = Harness((*BASIC, StepId.CLASSIFICATION), clock)
    h.adapter.on_classification(classification_result)
    h.adapter.on_hit(make_hit("a"))
    h.adapter.on_answer_chunk("Answer")
    h.adapter.on_done()

    classification, search, generation = h.state.steps
    assert classification.started_at <= search.started_at <= generation.started_at


def test_hits_start_error_is_logged(clock, caplog):
    """A retrieval error reported by hits_start is surfaced in the logs."""
    h = Harness(BASIC, clock)
    count = len(h.actions)

    with caplog.at_level(logging.WARNING, logger="ragpipe.orchestrator.adapter"):
        h.adapter.handle(HitsStartEvent(table="docs", status=404, error="table not found"))

    assert "table not found" in caplog.text
    assert len(h.actions) == count


def test_hits_end_returned_count_is_logged(clock, caplog):
    """hits_end logs how many hits were returned out of the total."""
    h = Harness(BASIC, clock)

    with caplog.at_level(logging.DEBUG, logger="ragpipe.orchestrator.adapter"):
        h.adapter.handle(HitsEndEvent(total=40, returned=10, took="5ms"))

    assert "10 of 40 hits returned" in caplog.text
    assert h.state.data_for(StepId.SEARCH).total == 40
