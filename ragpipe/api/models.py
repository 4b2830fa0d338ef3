"""Request/Response models for API endpoints."""

from pydantic import BaseModel, Field

from ragpipe.orchestrator.run_config import RunConfig
from ragpipe.orchestrator.state import PipelineState


class StartRunRequest(BaseModel):
    """Request model for starting a run."""

    query: str = Field(..., min_length=1, description="User's natural language question")
    config: RunConfig | None = Field(
        None, description="Run options; configured defaults are used when omitted"
    )


class StartRunResponse(BaseModel):
    """Response model for a started run."""

    run_id: str = Field(..., description="Identifier of the new active run")
    state: PipelineState = Field(..., description="Snapshot right after the run started")


class HealthResponse(BaseModel):
    """Response model for health endpoint."""

    status: str = Field(..., description="Service status")
    version: str = Field(..., description="Application version")
