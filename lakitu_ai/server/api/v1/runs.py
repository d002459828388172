"""
Agent Runs API Endpoints.

This module is the process surface of the code-execution loop: start a run
for a task, or resume a thread from a checkpoint.

Runs execute synchronously. A run that hits its wall-clock budget returns
``incomplete`` with ``stop_reason=timeout`` and a ``checkpoint_id`` that the
client passes to ``/resume``.
"""

from fastapi import APIRouter

from lakitu_ai.agent_core.schemas.domain import RunResult
from lakitu_ai.core.logging_config import get_logger
from lakitu_ai.server.schemas import RunCreate, RunResume
from lakitu_ai.server.services.deps import OrchestratorDep

logger = get_logger(__name__)
router = APIRouter()


@router.post(
    "/",
    response_model=RunResult,
    summary="Run Agent",
    description="Run the code-execution loop for a task until it answers, runs out of steps or times out.",
    response_description="The run's terminal result.",
    responses={
        502: {"description": "Model gateway answered with an error"},
        503: {"description": "Model gateway or code executor unavailable"},
    },
)
async def create_run(run_in: RunCreate, orchestrator: OrchestratorDep):
    """
    Run the agent on a task.

    - **task**: What the agent should do.
    - **system_prompt**: Replaces the default system prompt (optional).
    - **timeout_ms**: Wall-clock budget; the run is checkpointed when it expires (optional).
    - **max_steps**: THINKING-phase budget (optional).
    - **model**: Model preset or provider model id (optional).
    """
    logger.info(f"Starting run on thread {run_in.thread_id or '<new>'}: {run_in.task[:80]}")
    result = await orchestrator.run(
        run_in.task,
        system_prompt=run_in.system_prompt,
        timeout_ms=run_in.timeout_ms,
        max_steps=run_in.max_steps,
        model=run_in.model,
        thread_id=run_in.thread_id,
        session_id=run_in.session_id,
    )
    logger.info(
        f"Run on thread {result.thread_id} finished: {result.status.value} "
        f"({result.stop_reason.value if result.stop_reason else '-'})"
    )
    return result


@router.post(
    "/resume",
    response_model=RunResult,
    summary="Resume From Checkpoint",
    description="Restore a checkpoint and continue its thread.",
    response_description="The resumed run's terminal result.",
    responses={
        404: {"description": "Checkpoint not found"},
        409: {"description": "Checkpoint already completed or failed"},
    },
)
async def resume_run(resume_in: RunResume, orchestrator: OrchestratorDep):
    """
    Resume a thread from a checkpoint.

    Collaborator state (workspace files, beads, artifacts) is restored before
    the loop continues with the checkpointed conversation.
    """
    logger.info(f"Resuming from checkpoint {resume_in.checkpoint_id}")
    return await orchestrator.resume(
        resume_in.checkpoint_id,
        system_prompt=resume_in.system_prompt,
        timeout_ms=resume_in.timeout_ms,
    )
