"""
Health Check Endpoints.

This module provides basic system status endpoints (health, version, metrics)
used for monitoring and deployment verification.
"""

from fastapi import APIRouter

from lakitu_ai.server.core import constant
from lakitu_ai.server.schemas import MetricsResponse
from lakitu_ai.server.services.deps import OrchestratorDep

router = APIRouter()


@router.get(
    "/health",
    summary="Health Check",
    description="Check the operational status of the API server.",
    response_description="Status object.",
)
async def health_check():
    """
    Health check endpoint.

    Returns a simple status indicator to confirm the server is running and reachable.
    """
    return {"status": "ok"}


@router.get(
    "/version",
    summary="Get Version",
    description="Retrieve version information for the API server.",
    response_description="Version object.",
)
async def version():
    """
    Get API version.

    Returns the current semantic version of the API and supported schema version.
    """
    return {"version": constant.VERSION, "schema_version": constant.SCHEMA_VERSION}


@router.get(
    "/metrics",
    response_model=MetricsResponse,
    summary="Get Metrics",
    description="Uptime, subagent queue depth and sync outbox counts.",
    response_description="Metrics object.",
)
async def metrics(orchestrator: OrchestratorDep):
    """
    Get operational metrics.

    Reports how long the server has been up, how many subagents wait for a
    worker and how many outbox items are in each sync state.
    """
    return await orchestrator.metrics()
