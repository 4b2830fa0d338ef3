"""Per-step payload models.

Each step kind has its own frozen model tagged with ``kind``; ``StepData`` is
the discriminated union the reducer checks against the target step id.
Accumulating fields (hits, answer text, follow-up questions) are tuples so a
snapshot handed to a listener can never change underneath it.
"""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from ragpipe.config.constants import StepId


class Hit(BaseModel):
    """A single document returned by the retrieval step."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="allow")

    id: str = Field(..., alias="_id")
    score: float | None = Field(None, alias="_score")
    source: dict[str, Any] | None = Field(None, alias="_source")
    index_scores: dict[str, float] | None = Field(None, alias="_index_scores")


class ClassificationData(BaseModel):
    """Query classification result."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["classification"] = "classification"
    strategy: str
    semantic_mode: str | None = None
    semantic_query: str | None = None
    improved_query: str | None = None
    reasoning: str | None = None
    route_type: str | None = None
    confidence: float | None = None


class SearchData(BaseModel):
    """Hits retrieved so far, in backend order."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["search"] = "search"
    hits: tuple[Hit, ...] = ()
    total: int | None = None
    took: str | None = None


class GenerationData(BaseModel):
    """Answer text streamed so far."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["generation"] = "generation"
    answer_text: str = ""
    provider: str | None = None
    model: str | None = None


class ConfidenceData(BaseModel):
    """Answer confidence scores."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["confidence"] = "confidence"
    generation_confidence: float = Field(..., ge=0.0, le=1.0)
    context_relevance: float = Field(..., ge=0.0, le=1.0)


class FollowupData(BaseModel):
    """Follow-up questions streamed so far."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["followup"] = "followup"
    questions: tuple[str, ...] = ()


StepData = Annotated[
    Union[ClassificationData, SearchData, GenerationData, ConfidenceData, FollowupData],
    Field(discriminator="kind"),
]


def data_step_id(data: BaseModel) -> StepId:
    """Return the step id a payload belongs to."""
    return StepId(getattr(data, "kind"))
