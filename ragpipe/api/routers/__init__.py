"""API sub-routers assembled into a single api_router."""

from fastapi import APIRouter

from ragpipe.api.routers.pipeline import router as pipeline_router

api_router = APIRouter()

api_router.include_router(pipeline_router, tags=["pipeline"])
