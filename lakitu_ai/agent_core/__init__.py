"""Core agent runtime, checkpoints, subagents and persistence abstractions.

This package contains the "engine room" of the agent backend.

Design overview
---------------

The agent acts by writing code. Every model call offers a single
``execute_code`` tool; the code runs in a sandbox against capability modules
and its output is fed back to the model:

- ``agent_core.runtime.AgentLoopController`` drives the think/execute loop on
  a LangGraph state machine, records a chain-of-thought step log through
  ``agent_core.trace.StepEmitter`` and turns a wall-clock timeout into a
  resumable checkpoint.
- ``agent_core.checkpoints.CheckpointStore`` persists and restores checkpoints,
  together with the state of the collaborators the code touched.
- ``agent_core.subagents.SubagentSupervisor`` spawns independent loops with
  their own model, capability set and step budget, and runs them in the
  background.
- ``agent_core.sync_outbox.SyncOutbox`` queues local writes for cloud sync.

All durable state goes through repository interfaces (``agent_core.repos``);
nothing is shared in-process between runs.

Typical usage
-------------

Most applications should use ``agent_core.service.AgentService``:

1. Build repositories (``repos.sql.build_sql_repos``) and a gateway client.
2. Build the capability registry (``factory.build_default_registry``).
3. ``run`` a task; when it returns ``incomplete`` with a checkpoint id,
   ``resume`` it later.
"""

from .checkpoints import CheckpointSnapshot, CheckpointStore, SnapshotProviders
from .runtime import AgentLoopController, LoopDeps, LoopOptions
from .schemas.domain import (
    ChainOfThoughtStep,
    Checkpoint,
    CheckpointReason,
    CheckpointStatus,
    Message,
    MessageRole,
    RunResult,
    RunStatus,
    StepStatus,
    StepType,
    StopReason,
    Subagent,
    SubagentStatus,
)
from .service import AgentService, AgentServiceDeps
from .subagents import SubagentQueue, SubagentSupervisor, SubagentWorker
from .sync_outbox import SyncOutbox
from .trace import StepEmitter

__all__ = [
    "AgentLoopController",
    "AgentService",
    "AgentServiceDeps",
    "ChainOfThoughtStep",
    "Checkpoint",
    "CheckpointReason",
    "CheckpointSnapshot",
    "CheckpointStatus",
    "CheckpointStore",
    "LoopDeps",
    "LoopOptions",
    "Message",
    "MessageRole",
    "RunResult",
    "RunStatus",
    "SnapshotProviders",
    "StepEmitter",
    "StepStatus",
    "StepType",
    "StopReason",
    "Subagent",
    "SubagentQueue",
    "SubagentStatus",
    "SubagentSupervisor",
    "SubagentWorker",
    "SyncOutbox",
]
