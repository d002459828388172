"""Pydantic schemas for the agent core domain.

Every record the loop, the checkpoint store, the subagent supervisor and the
sync outbox persist or return is declared in ``schemas.domain``. Models share
``BaseSchema``, which forbids unknown fields.
"""

from .base import BaseSchema
from .domain import (
    BeadSnapshot,
    ChainOfThoughtStep,
    Checkpoint,
    CheckpointReason,
    CheckpointStatus,
    CodeExecution,
    FileSnapshot,
    Message,
    MessageRole,
    OutboxOperation,
    OutboxStatus,
    RunResult,
    RunStatus,
    StepStatus,
    StepType,
    StopReason,
    Subagent,
    SubagentStatus,
    SyncOutboxItem,
    ToolCall,
    ToolResult,
)

__all__ = [
    "BaseSchema",
    "BeadSnapshot",
    "ChainOfThoughtStep",
    "Checkpoint",
    "CheckpointReason",
    "CheckpointStatus",
    "CodeExecution",
    "FileSnapshot",
    "Message",
    "MessageRole",
    "OutboxOperation",
    "OutboxStatus",
    "RunResult",
    "RunStatus",
    "StepStatus",
    "StepType",
    "StopReason",
    "Subagent",
    "SubagentStatus",
    "SyncOutboxItem",
    "ToolCall",
    "ToolResult",
]
