"""
Checkpoint API Endpoints.

Inspect the checkpoints of a thread and finish them by hand.
"""

from typing import List

from fastapi import APIRouter, HTTPException, Query

from lakitu_ai.agent_core.schemas.domain import Checkpoint, CheckpointStatus
from lakitu_ai.server.schemas import CheckpointComplete
from lakitu_ai.server.services.deps import OrchestratorDep

router = APIRouter()


@router.get(
    "/",
    response_model=List[Checkpoint],
    summary="List Checkpoints",
    description="List a thread's checkpoints, newest iteration first.",
)
async def list_checkpoints(
    orchestrator: OrchestratorDep,
    thread_id: str = Query(..., description="Thread whose checkpoints to list."),
    limit: int = Query(50, ge=1, le=500),
):
    return await orchestrator.list_checkpoints(thread_id, limit=limit)


@router.get(
    "/{checkpoint_id}",
    response_model=Checkpoint,
    summary="Get Checkpoint",
    responses={404: {"description": "Checkpoint not found"}},
)
async def get_checkpoint(checkpoint_id: str, orchestrator: OrchestratorDep):
    cp = await orchestrator.get_checkpoint(checkpoint_id)
    if cp is None:
        raise HTTPException(status_code=404, detail="Checkpoint not found")
    return cp


@router.post(
    "/{checkpoint_id}/complete",
    response_model=Checkpoint,
    summary="Complete Checkpoint",
    description="Mark a checkpoint completed or failed. Finishing an already finished checkpoint is a no-op.",
    responses={404: {"description": "Checkpoint not found"}},
)
async def complete_checkpoint(checkpoint_id: str, body: CheckpointComplete, orchestrator: OrchestratorDep):
    return await orchestrator.complete_checkpoint(checkpoint_id, CheckpointStatus(body.outcome), error=body.error)
