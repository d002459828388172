from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import Field

from ...core.ids import new_checkpoint_id, new_outbox_id, new_step_id, new_subagent_id
from .base import BaseSchema


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MessageRole(str, Enum):
    system = "system"
    user = "user"
    assistant = "assistant"


class StepType(str, Enum):
    thinking = "thinking"
    tool = "tool"
    text = "text"


class StepStatus(str, Enum):
    pending = "pending"
    active = "active"
    complete = "complete"
    error = "error"


class CheckpointReason(str, Enum):
    timeout = "timeout"
    cancelled = "cancelled"
    token_limit = "token_limit"
    manual = "manual"
    error_recovery = "error_recovery"


class CheckpointStatus(str, Enum):
    active = "active"
    restored = "restored"
    completed = "completed"
    failed = "failed"
    superseded = "superseded"


class SubagentStatus(str, Enum):
    pending = "pending"
    running = "running"
    completed = "completed"
    failed = "failed"


class RunStatus(str, Enum):
    completed = "completed"
    incomplete = "incomplete"


class StopReason(str, Enum):
    final_answer = "final_answer"
    max_steps = "max_steps"
    empty_response = "empty_response"
    timeout = "timeout"
    cancelled = "cancelled"


class OutboxOperation(str, Enum):
    create = "create"
    update = "update"
    delete = "delete"
    upsert = "upsert"


class OutboxStatus(str, Enum):
    pending = "pending"
    syncing = "syncing"
    synced = "synced"
    failed = "failed"


TERMINAL_CHECKPOINT_STATUSES = frozenset({CheckpointStatus.completed, CheckpointStatus.failed})
TERMINAL_SUBAGENT_STATUSES = frozenset({SubagentStatus.completed, SubagentStatus.failed})


class Message(BaseSchema):
    role: MessageRole
    content: str
    timestamp: Optional[datetime] = None


class ChainOfThoughtStep(BaseSchema):
    id: str = Field(default_factory=new_step_id)
    thread_id: str
    seq: int = 0

    type: StepType
    status: StepStatus = StepStatus.pending
    label: str

    tool_name: Optional[str] = None
    input: Optional[Dict[str, Any]] = None

    timestamp: datetime = Field(default_factory=_utc_now)


class ToolCall(BaseSchema):
    tool_name: str
    args: Dict[str, Any] = Field(default_factory=dict)


class ToolResult(BaseSchema):
    success: bool
    output: str = ""
    error: Optional[str] = None


class CodeExecution(BaseSchema):
    code: str
    output: str
    success: bool


class FileSnapshot(BaseSchema):
    path: str
    content_hash: str
    size: int
    last_modified: Optional[datetime] = None


class BeadSnapshot(BaseSchema):
    id: str
    title: str
    status: str
    type: str = "task"
    priority: int = 2


class Checkpoint(BaseSchema):
    """Durable, restorable snapshot of a thread's progress.

    ``file_state``/``beads_state``/``artifacts_produced`` are collected from
    the snapshot providers and handed back to them verbatim on restore.
    """

    id: str = Field(default_factory=new_checkpoint_id)
    thread_id: str
    session_id: Optional[str] = None

    iteration: int = 1
    next_task: str
    reason: CheckpointReason
    status: CheckpointStatus = CheckpointStatus.active

    message_history: List[Message] = Field(default_factory=list)
    file_state: List[FileSnapshot] = Field(default_factory=list)
    beads_state: List[BeadSnapshot] = Field(default_factory=list)
    artifacts_produced: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    created_at: datetime = Field(default_factory=_utc_now)
    restored_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None


class Subagent(BaseSchema):
    id: str = Field(default_factory=new_subagent_id)
    parent_thread_id: Optional[str] = None

    name: str
    task: str
    tools: List[str] = Field(default_factory=list)
    model: str

    status: SubagentStatus = SubagentStatus.pending
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    created_at: datetime = Field(default_factory=_utc_now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class SyncOutboxItem(BaseSchema):
    id: str = Field(default_factory=new_outbox_id)
    idempotency_key: str

    entity_type: str
    entity_id: str
    operation: OutboxOperation
    payload: Dict[str, Any] = Field(default_factory=dict)
    cloud_path: str

    status: OutboxStatus = OutboxStatus.pending
    attempts: int = 0
    max_attempts: int = 3
    priority: int = 5

    session_id: Optional[str] = None
    thread_id: Optional[str] = None

    cloud_id: Optional[str] = None
    last_error: Optional[str] = None

    created_at: datetime = Field(default_factory=_utc_now)
    last_attempt_at: Optional[datetime] = None
    synced_at: Optional[datetime] = None


class RunResult(BaseSchema):
    """Terminal shape of one loop run.

    A run either completes with text or returns ``incomplete``. Only an
    ``incomplete`` result whose ``stop_reason`` is ``timeout`` carries a
    ``checkpoint_id`` to resume from.
    """

    status: RunStatus
    thread_id: str
    text: str = ""
    code_executions: List[CodeExecution] = Field(default_factory=list)
    stop_reason: StopReason
    steps_taken: int = 0
    iteration: int = 0
    checkpoint_id: Optional[str] = None
    duration_ms: float = 0.0
