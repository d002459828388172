from __future__ import annotations

"""Repository interface contracts.

The loop, the checkpoint store, the step emitter, the subagent supervisor and
the sync outbox depend on these Protocols instead of concrete persistence
implementations.

Contract guidelines
-------------------

- All methods are async.
- Implementations must not leak SQLAlchemy sessions/transactions to callers.
- Status transitions are *conditional*: they only apply when the current
  status is one of ``from_statuses`` and report whether they applied.
  Callers never overwrite a status they have not read.
- The step log is append-only apart from status updates.
"""

from datetime import datetime
from typing import Any, Collection, Dict, Optional, Protocol

from ..schemas.domain import (
    ChainOfThoughtStep,
    Checkpoint,
    CheckpointStatus,
    OutboxStatus,
    StepStatus,
    Subagent,
    SubagentStatus,
    SyncOutboxItem,
)


class StepRepository(Protocol):
    """Per-thread ordered log of chain-of-thought steps."""

    async def append(self, step: ChainOfThoughtStep) -> ChainOfThoughtStep:
        """
        Append a step to its thread's log.

        The repository assigns ``seq`` (one greater than the thread's last
        step) and returns the stored step.
        """
        ...

    async def get(self, step_id: str) -> Optional[ChainOfThoughtStep]: ...

    async def update_status(
        self, step_id: str, *, from_statuses: Collection[StepStatus], to_status: StepStatus
    ) -> bool:
        """
        Conditionally move a step to ``to_status``.

        Returns:
            True if the step existed with a status in ``from_statuses`` and was updated.
        """
        ...

    async def list(self, thread_id: str, *, after_seq: Optional[int] = None, limit: Optional[int] = None) -> list[ChainOfThoughtStep]:
        """
        List a thread's steps ordered by ``seq``.

        Args:
            thread_id: The thread identifier.
            after_seq: Only return steps with a greater ``seq`` (for incremental polling).
            limit: Max number of steps to return.
        """
        ...


class CheckpointRepository(Protocol):
    """Persist resumable checkpoints."""

    async def create_superseding(self, checkpoint: Checkpoint) -> list[str]:
        """
        Insert ``checkpoint`` as ``active`` and, in the same transaction, mark
        the thread's previous ``active``/``restored`` checkpoints ``superseded``.
        When ``checkpoint.iteration`` is not above the thread's highest
        iteration it is raised to one past it before the insert.

        Returns:
            The ids of the checkpoints that were superseded.
        """
        ...

    async def get(self, checkpoint_id: str) -> Optional[Checkpoint]: ...

    async def latest_for_thread(self, thread_id: str) -> Optional[Checkpoint]:
        """Return the thread's checkpoint with the highest iteration, newest first on ties."""
        ...

    async def list_for_thread(self, thread_id: str, limit: int = 50) -> list[Checkpoint]:
        """List a thread's checkpoints, newest first."""
        ...

    async def transition(
        self,
        checkpoint_id: str,
        *,
        from_statuses: Collection[CheckpointStatus],
        to_status: CheckpointStatus,
        restored_at: Optional[datetime] = None,
        completed_at: Optional[datetime] = None,
        error: Optional[str] = None,
    ) -> Optional[Checkpoint]:
        """
        Conditionally move a checkpoint to ``to_status``.

        Returns:
            The updated checkpoint, or None if it does not exist or its status
            was not in ``from_statuses``.
        """
        ...

    async def delete_finished_before(self, cutoff: datetime, *, statuses: Collection[CheckpointStatus]) -> int:
        """Delete checkpoints in ``statuses`` created before ``cutoff``; return the count."""
        ...


class SubagentRepository(Protocol):
    """Persist subagent records and their lifecycle."""

    async def create(self, subagent: Subagent) -> None: ...

    async def get(self, subagent_id: str) -> Optional[Subagent]: ...

    async def transition(
        self,
        subagent_id: str,
        *,
        from_statuses: Collection[SubagentStatus],
        to_status: SubagentStatus,
        result: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
        started_at: Optional[datetime] = None,
        completed_at: Optional[datetime] = None,
    ) -> bool:
        """
        Conditionally move a subagent to ``to_status``
        (``UPDATE ... WHERE status IN from_statuses``).

        Returns:
            True if the update applied.
        """
        ...

    async def list(
        self,
        *,
        status: Optional[SubagentStatus] = None,
        parent_thread_id: Optional[str] = None,
        limit: int = 50,
    ) -> list[Subagent]:
        """List subagents, newest first."""
        ...


class OutboxRepository(Protocol):
    """Transactional outbox of local writes awaiting cloud sync."""

    async def add(self, item: SyncOutboxItem) -> str:
        """Insert ``item`` unless its idempotency key exists; return the stored id."""
        ...

    async def get(self, item_id: str) -> Optional[SyncOutboxItem]: ...

    async def pending(self, *, limit: int = 50, session_id: Optional[str] = None) -> list[SyncOutboxItem]:
        """Pending items ordered by priority, then creation time."""
        ...

    async def mark_syncing(self, item_id: str, *, at: datetime) -> Optional[SyncOutboxItem]:
        """Set ``syncing``, bump ``attempts``; return the item as it was before, or None."""
        ...

    async def mark_synced(self, item_id: str, *, cloud_id: Optional[str], at: datetime) -> None: ...

    async def mark_failed(self, item_id: str, *, error: str, at: datetime) -> Optional[OutboxStatus]:
        """Record a failed attempt; return the resulting status, or None if unknown."""
        ...

    async def count_by(self, *, session_id: Optional[str] = None) -> list[tuple[str, str, int]]:
        """Return ``(entity_type, status, count)`` rows."""
        ...

    async def delete_synced_before(self, cutoff: datetime) -> int: ...

    async def reset_failed(self, *, entity_type: Optional[str] = None) -> int:
        """Move failed items back to pending with zero attempts; return the count."""
        ...
