"""
API Schemas.

Pydantic models for request bodies and for the payloads that are not plain
domain objects (metrics, stream events). Responses that are domain objects
(``RunResult``, ``Checkpoint``, ``ChainOfThoughtStep``, ``Subagent``) reuse the
agent core schemas directly.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from lakitu_ai.agent_core.schemas.domain import ChainOfThoughtStep


class RunCreate(BaseModel):
    """
    Schema for starting a new agent run.

    The run executes synchronously; the response is the run's terminal result.
    """

    task: str = Field(
        ...,
        min_length=1,
        description="The task for the agent to accomplish.",
        examples=["Summarize the open beads and close the ones that are done."],
    )
    system_prompt: Optional[str] = Field(
        default=None,
        description="Replaces the default system prompt.",
    )
    timeout_ms: Optional[int] = Field(
        default=None,
        description="Wall-clock budget in milliseconds. On expiry the run is checkpointed. "
        "0 disables the budget; omitted uses the server default.",
        examples=[600000],
    )
    max_steps: Optional[int] = Field(
        default=None,
        ge=1,
        description="Maximum THINKING phases; omitted uses the server default.",
        examples=[10],
    )
    model: Optional[str] = Field(
        default=None,
        description="Model preset (fast, balanced, capable, vision) or provider model id.",
        examples=["balanced"],
    )
    thread_id: Optional[str] = Field(
        default=None,
        description="Thread to record steps and checkpoints under; generated when omitted.",
    )
    session_id: Optional[str] = Field(
        default=None,
        description="Session the thread belongs to.",
    )


class RunResume(BaseModel):
    """Schema for resuming a thread from a checkpoint."""

    checkpoint_id: str = Field(..., description="The checkpoint to continue from.")
    system_prompt: Optional[str] = Field(default=None, description="Replaces the checkpointed system prompt.")
    timeout_ms: Optional[int] = Field(
        default=None,
        description="Wall-clock budget in milliseconds; omitted uses the server default.",
    )


class CheckpointComplete(BaseModel):
    """Schema for finishing a checkpoint by hand."""

    outcome: Literal["completed", "failed"] = Field(default="completed", description="Terminal checkpoint status.")
    error: Optional[str] = Field(default=None, description="Failure description, for outcome=failed.")


class SubagentSpawn(BaseModel):
    """Schema for spawning a subagent."""

    name: str = Field(..., min_length=1, description="Display name of the subagent.", examples=["researcher"])
    task: str = Field(..., min_length=1, description="The narrow task delegated to the subagent.")
    tools: List[str] = Field(
        default_factory=list,
        description="Capabilities the subagent may use. execute_code is always included.",
    )
    model: Optional[str] = Field(default=None, description="Model preset or provider model id.")
    parent_thread_id: Optional[str] = Field(default=None, description="Thread of the spawning agent.")


class SubagentActionResult(BaseModel):
    """Outcome of a subagent command (spawn, cancel)."""

    success: bool
    subagent_id: Optional[str] = Field(default=None, serialization_alias="subagentId")
    status: Optional[str] = None
    error: Optional[str] = None


class SubagentStatusResponse(BaseModel):
    found: bool
    status: Optional[str] = None
    name: Optional[str] = None
    task: Optional[str] = None
    has_error: Optional[bool] = Field(default=None, serialization_alias="hasError")


class SubagentResultResponse(BaseModel):
    found: bool
    ready: bool
    status: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class MetricsResponse(BaseModel):
    """Operational counters of the running server."""

    status: str = "ok"
    uptime_s: float = Field(..., description="Seconds since the server started.")
    subagent_queue_depth: int = Field(..., description="Subagents waiting for a worker.")
    subagent_workers_running: bool = Field(..., description="Whether the subagent workers are consuming.")
    outbox: Dict[str, Any] = Field(default_factory=dict, description="Sync outbox counts per status and entity type.")


# =====================================================================
# Stream events
# =====================================================================


class StepEvent(BaseModel):
    """A new or updated chain-of-thought step."""

    type: Literal["step"] = "step"
    step: ChainOfThoughtStep


class KeepAliveEvent(BaseModel):
    """Keep-alive event for idle streams.

    Sent periodically when no steps changed to prevent client timeout.
    """

    comment: str = Field(
        default="keep-alive",
        description="A fixed comment indicating this is a keep-alive message.",
        examples=["keep-alive"],
    )
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ErrorEvent(BaseModel):
    """Error event for stream failures.

    Sent when an error occurs during step streaming.
    """

    error: str = Field(
        ...,
        description="The error message or error type.",
        examples=["Database connection failed"],
    )
    details: Optional[str] = Field(default=None, description="Additional details or context about the error.")
