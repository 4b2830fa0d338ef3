"""Per-run configuration supplied by the UI."""

from typing import Any

from pydantic import BaseModel, Field

from ragpipe.config.constants import REQUIRED_STEPS, StepId
from ragpipe.config.settings import Settings
from ragpipe.orchestrator.state import ordered_steps


class GeneratorConfig(BaseModel):
    """LLM used for answer generation."""

    provider: str = Field(..., description="Generator provider, e.g. openai or ollama")
    model: str = Field(..., description="Model name")
    temperature: float | None = Field(None, ge=0.0, le=2.0)


class RunConfig(BaseModel):
    """Options for one run.

    Only ``enabled_steps`` is interpreted by the orchestrator; everything else
    is passed through to the backend request.
    """

    enabled_steps: list[StepId] = Field(
        default_factory=lambda: [StepId.SEARCH, StepId.GENERATION],
        description="Steps to run; search and generation are always included",
    )
    generator_config: GeneratorConfig
    limit: int = Field(10, ge=1)
    system_prompt: str | None = None
    followup_count: int | None = Field(None, ge=1)
    with_reasoning: bool = False
    table: str | None = None

    def steps(self) -> tuple[StepId, ...]:
        """Enabled steps plus the required ones, in declared order."""
        return ordered_steps(set(self.enabled_steps) | REQUIRED_STEPS)

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> "RunConfig":
        """Build a config from the configured defaults."""
        values: dict[str, Any] = {
            "generator_config": GeneratorConfig(
                provider=settings.default_provider,
                model=settings.default_model,
                temperature=settings.default_temperature,
            ),
            "limit": settings.default_limit,
            "followup_count": settings.default_followup_count,
            "table": settings.default_table or None,
        }
        values.update(overrides)
        return cls(**values)
