"""
Subagent API Endpoints.

Spawn subagents, poll their status and results, and cancel them. Spawning
returns immediately; queued subagents are executed by background workers.
"""

from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query

from lakitu_ai.agent_core.schemas.domain import Subagent, SubagentStatus
from lakitu_ai.core.logging_config import get_logger
from lakitu_ai.server.schemas import (
    SubagentActionResult,
    SubagentResultResponse,
    SubagentSpawn,
    SubagentStatusResponse,
)
from lakitu_ai.server.services.deps import OrchestratorDep

logger = get_logger(__name__)
router = APIRouter()


@router.post(
    "/",
    response_model=SubagentActionResult,
    status_code=202,
    summary="Spawn Subagent",
    description="Record a subagent and queue it for background execution.",
    responses={400: {"description": "Unknown tool requested"}},
)
async def spawn_subagent(body: SubagentSpawn, orchestrator: OrchestratorDep):
    """
    Spawn a subagent.

    - **name**: Display name, used in the subagent's system prompt.
    - **task**: The task delegated to it.
    - **tools**: Capabilities it may use; ``execute_code`` is always included.
    - **model**: Model preset or provider model id (optional).
    """
    out = await orchestrator.spawn_subagent(
        name=body.name,
        task=body.task,
        tools=body.tools,
        model=body.model,
        parent_thread_id=body.parent_thread_id,
    )
    return SubagentActionResult(success=out["success"], subagent_id=out["subagentId"], status=out["status"])


@router.get(
    "/",
    response_model=List[Subagent],
    summary="List Subagents",
    description="List subagents, newest first.",
)
async def list_subagents(
    orchestrator: OrchestratorDep,
    status: Optional[SubagentStatus] = Query(None),
    parent_thread_id: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
):
    return await orchestrator.list_subagents(status=status, parent_thread_id=parent_thread_id, limit=limit)


@router.get(
    "/{subagent_id}",
    response_model=SubagentStatusResponse,
    summary="Get Subagent Status",
    responses={404: {"description": "Subagent not found"}},
)
async def get_subagent_status(subagent_id: str, orchestrator: OrchestratorDep):
    out = await orchestrator.subagent_status(subagent_id)
    if not out["found"]:
        raise HTTPException(status_code=404, detail="Subagent not found")
    return SubagentStatusResponse(
        found=True,
        status=out["status"],
        name=out["name"],
        task=out["task"],
        has_error=out["hasError"],
    )


@router.get(
    "/{subagent_id}/result",
    response_model=SubagentResultResponse,
    summary="Get Subagent Result",
    description="The result once the subagent finished; ``ready`` is false while it is pending or running.",
    responses={404: {"description": "Subagent not found"}},
)
async def get_subagent_result(subagent_id: str, orchestrator: OrchestratorDep):
    out = await orchestrator.subagent_result(subagent_id)
    if not out["found"]:
        raise HTTPException(status_code=404, detail="Subagent not found")
    return SubagentResultResponse(**out)


@router.post(
    "/{subagent_id}/cancel",
    response_model=SubagentActionResult,
    summary="Cancel Subagent",
    responses={
        404: {"description": "Subagent not found"},
        409: {"description": "Subagent already finished"},
    },
)
async def cancel_subagent(subagent_id: str, orchestrator: OrchestratorDep):
    out = await orchestrator.cancel_subagent(subagent_id)
    if not out["success"]:
        code = 404 if out["error"] == "Subagent not found" else 409
        raise HTTPException(status_code=code, detail=out["error"])
    logger.info(f"Subagent {subagent_id} cancelled")
    return SubagentActionResult(success=True, subagent_id=subagent_id, status=SubagentStatus.failed.value)
