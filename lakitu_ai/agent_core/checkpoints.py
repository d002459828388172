from __future__ import annotations

"""Checkpoint store.

A checkpoint is a durable, restorable snapshot of a thread's progress: a
bounded slice of the conversation, a description of the remaining work and
the state of the collaborators the agent's code touches (workspace files,
task-tracker beads, produced artifacts).

Lifecycle
---------

::

    active --restore--> restored --complete--> completed | failed
       |                    |
       +---- superseded <---+   (a newer checkpoint was created for the thread)

- ``create`` inserts the new checkpoint ``active`` and supersedes the
  thread's previous live checkpoint in the same transaction. Creation is also
  serialized per thread inside the process.
- ``restore`` hands the collaborator snapshots back to their providers
  *before* marking the checkpoint ``restored``.
- ``resuming`` wraps ``restore`` for a resumed run and refuses a second
  concurrent resume of the same checkpoint in this process.
- ``complete`` is idempotent so retrying callers can deliver it more than once.
"""

import asyncio
import hashlib
import logging
import os
import weakref
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Optional, Protocol, Sequence

from ..core.monitoring import log_checkpoint_created
from .errors import CheckpointAlreadyTerminal, CheckpointInUse, CheckpointNotFound
from .repos.interfaces import CheckpointRepository
from .schemas.domain import (
    TERMINAL_CHECKPOINT_STATUSES,
    BeadSnapshot,
    Checkpoint,
    CheckpointReason,
    CheckpointStatus,
    FileSnapshot,
    Message,
    MessageRole,
    OutboxOperation,
)

logger = logging.getLogger(__name__)

MAX_CHECKPOINT_MESSAGE_HISTORY = 50
MAX_CHECKPOINT_FILE_STATE = 1000
CHECKPOINT_CLEANUP_DAYS = 7

_RESTORABLE = frozenset({CheckpointStatus.active, CheckpointStatus.restored, CheckpointStatus.superseded})
_LIVE = frozenset({CheckpointStatus.active, CheckpointStatus.restored})
_FINISHED = frozenset({CheckpointStatus.completed, CheckpointStatus.failed, CheckpointStatus.superseded})


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class FileStateProvider(Protocol):
    async def snapshot(self, thread_id: str) -> list[FileSnapshot]: ...

    async def restore(self, thread_id: str, snapshot: list[FileSnapshot]) -> None: ...


class BeadsStateProvider(Protocol):
    async def snapshot(self, thread_id: str) -> list[BeadSnapshot]: ...

    async def restore(self, thread_id: str, snapshot: list[BeadSnapshot]) -> None: ...


class ArtifactsProvider(Protocol):
    async def snapshot(self, thread_id: str) -> list[str]: ...

    async def restore(self, thread_id: str, snapshot: list[str]) -> None: ...


class CheckpointOutbox(Protocol):
    async def add(
        self,
        *,
        idempotency_key: str,
        entity_type: str,
        entity_id: str,
        operation: OutboxOperation,
        payload: Dict[str, Any],
        cloud_path: str,
        priority: int = 5,
        session_id: Optional[str] = None,
        thread_id: Optional[str] = None,
    ) -> str: ...


@dataclass(frozen=True)
class SnapshotProviders:
    """Collaborators whose state is captured in checkpoints. Each one is optional."""

    files: Optional[FileStateProvider] = None
    beads: Optional[BeadsStateProvider] = None
    artifacts: Optional[ArtifactsProvider] = None


@dataclass(frozen=True)
class CheckpointSnapshot:
    """What the loop hands over when it checkpoints."""

    messages: Sequence[Message]
    metadata: Dict[str, Any] = field(default_factory=dict)
    session_id: Optional[str] = None


def truncate_history(messages: Sequence[Message], max_messages: int) -> list[Message]:
    """Keep the last ``max_messages`` messages; a leading system message always survives."""
    msgs = list(messages)
    if max_messages <= 0:
        return []
    if len(msgs) <= max_messages:
        return msgs
    if msgs[0].role == MessageRole.system:
        if max_messages == 1:
            return [msgs[0]]
        return [msgs[0]] + msgs[-(max_messages - 1):]
    return msgs[-max_messages:]


def next_iteration(prior: Optional[Checkpoint]) -> int:
    return prior.iteration + 1 if prior is not None else 1


class CheckpointStore:
    """Create, restore and finish checkpoints for threads."""

    def __init__(
        self,
        repo: CheckpointRepository,
        providers: SnapshotProviders | None = None,
        *,
        max_messages: int = MAX_CHECKPOINT_MESSAGE_HISTORY,
        max_files: int = MAX_CHECKPOINT_FILE_STATE,
        outbox: CheckpointOutbox | None = None,
    ) -> None:
        """
        Initialize the store.

        Args:
            repo: Persistence for checkpoint records.
            providers: Collaborators snapshotted on create and restored on restore.
            max_messages: Bound on the stored message history.
            max_files: Bound on the stored file-state entries.
            outbox: When set, every new checkpoint is queued for cloud sync.
        """
        self._repo = repo
        self._providers = providers or SnapshotProviders()
        self._max_messages = max_messages
        self._max_files = max_files
        self._outbox = outbox
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()
        self._resuming: set[str] = set()

    def _lock_for(self, thread_id: str) -> asyncio.Lock:
        lock = self._locks.get(thread_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[thread_id] = lock
        return lock

    async def create(
        self,
        thread_id: str,
        *,
        next_task: str,
        reason: CheckpointReason,
        snapshot: CheckpointSnapshot,
        iteration: Optional[int] = None,
    ) -> Checkpoint:
        """
        Persist a new ``active`` checkpoint for ``thread_id``.

        Any previous live checkpoint of the thread becomes ``superseded`` in
        the same transaction, so the thread never has two ``active`` ones.

        Args:
            iteration: Iteration to record. When omitted it is one past the
                thread's latest checkpoint, read under the thread's lock so
                concurrent creators get distinct, increasing numbers.

        Returns:
            The new checkpoint.
        """
        async with self._lock_for(thread_id):
            if iteration is None:
                iteration = next_iteration(await self._repo.latest_for_thread(thread_id))
            p = self._providers
            files = await p.files.snapshot(thread_id) if p.files is not None else []
            beads = await p.beads.snapshot(thread_id) if p.beads is not None else []
            artifacts = await p.artifacts.snapshot(thread_id) if p.artifacts is not None else []

            cp = Checkpoint(
                thread_id=thread_id,
                session_id=snapshot.session_id,
                iteration=iteration,
                next_task=next_task,
                reason=reason,
                message_history=truncate_history(snapshot.messages, self._max_messages),
                file_state=list(files)[: self._max_files],
                beads_state=list(beads),
                artifacts_produced=list(artifacts),
                metadata=dict(snapshot.metadata),
            )
            superseded = await self._repo.create_superseding(cp)

        logger.info(
            "checkpoint %s created for thread %s (iteration=%d, reason=%s, superseded=%s)",
            cp.id,
            thread_id,
            cp.iteration,
            reason.value,
            superseded or "none",
        )
        log_checkpoint_created(thread_id, cp.id, cp.iteration, reason.value)

        if self._outbox is not None:
            try:
                await self._outbox.add(
                    idempotency_key=f"checkpoint:{cp.id}",
                    entity_type="checkpoint",
                    entity_id=cp.id,
                    operation=OutboxOperation.create,
                    payload=cp.model_dump(mode="json"),
                    cloud_path="checkpoints",
                    session_id=cp.session_id,
                    thread_id=thread_id,
                )
            except Exception:
                # The checkpoint is already durable; only its cloud copy is delayed.
                logger.exception("failed to enqueue checkpoint %s for sync", cp.id)
        return cp

    async def get(self, checkpoint_id: str) -> Optional[Checkpoint]:
        return await self._repo.get(checkpoint_id)

    async def latest_for_thread(self, thread_id: str) -> Optional[Checkpoint]:
        return await self._repo.latest_for_thread(thread_id)

    async def list_for_thread(self, thread_id: str, limit: int = 50) -> list[Checkpoint]:
        return await self._repo.list_for_thread(thread_id, limit=limit)

    async def restore(self, checkpoint_id: str) -> Checkpoint:
        """
        Restore collaborator state from a checkpoint and mark it ``restored``.

        Raises:
            CheckpointNotFound: No checkpoint has this id.
            CheckpointAlreadyTerminal: The checkpoint is ``completed`` or ``failed``.
        """
        cp = await self._repo.get(checkpoint_id)
        if cp is None:
            raise CheckpointNotFound(checkpoint_id)
        if cp.status in TERMINAL_CHECKPOINT_STATUSES:
            raise CheckpointAlreadyTerminal(checkpoint_id, cp.status.value)

        p = self._providers
        if p.files is not None:
            await p.files.restore(cp.thread_id, list(cp.file_state))
        if p.beads is not None:
            await p.beads.restore(cp.thread_id, list(cp.beads_state))
        if p.artifacts is not None:
            await p.artifacts.restore(cp.thread_id, list(cp.artifacts_produced))

        updated = await self._repo.transition(
            checkpoint_id,
            from_statuses=_RESTORABLE,
            to_status=CheckpointStatus.restored,
            restored_at=_utc_now(),
        )
        if updated is None:
            current = await self._repo.get(checkpoint_id)
            if current is None:
                raise CheckpointNotFound(checkpoint_id)
            raise CheckpointAlreadyTerminal(checkpoint_id, current.status.value)
        logger.info(
            "checkpoint %s restored for thread %s",
            checkpoint_id,
            cp.thread_id,
            extra={"thread_id": cp.thread_id, "checkpoint_id": checkpoint_id},
        )
        return updated

    @asynccontextmanager
    async def resuming(self, checkpoint_id: str) -> AsyncIterator[Checkpoint]:
        """
        Restore a checkpoint and hold it for the duration of a resumed run.

        A ``restored`` checkpoint stays restorable so a resume that died with
        its process can be retried; within one process only one resume of a
        checkpoint runs at a time.

        Raises:
            CheckpointInUse: The checkpoint is already being resumed here.
            CheckpointNotFound: No checkpoint has this id.
            CheckpointAlreadyTerminal: The checkpoint is ``completed`` or ``failed``.
        """
        if checkpoint_id in self._resuming:
            raise CheckpointInUse(checkpoint_id)
        self._resuming.add(checkpoint_id)
        try:
            yield await self.restore(checkpoint_id)
        finally:
            self._resuming.discard(checkpoint_id)

    async def complete(
        self,
        checkpoint_id: str,
        outcome: CheckpointStatus = CheckpointStatus.completed,
        error: Optional[str] = None,
    ) -> Checkpoint:
        """
        Move a checkpoint to ``completed`` or ``failed``.

        Completing a checkpoint that is already finished (completed, failed
        or superseded) returns it unchanged.

        Raises:
            CheckpointNotFound: No checkpoint has this id.
            ValueError: ``outcome`` is not ``completed`` or ``failed``.
        """
        if outcome not in TERMINAL_CHECKPOINT_STATUSES:
            raise ValueError(f"invalid checkpoint outcome: {outcome}")
        cp = await self._repo.get(checkpoint_id)
        if cp is None:
            raise CheckpointNotFound(checkpoint_id)
        if cp.status in _FINISHED:
            return cp

        updated = await self._repo.transition(
            checkpoint_id,
            from_statuses=_LIVE,
            to_status=outcome,
            completed_at=_utc_now(),
            error=error,
        )
        if updated is None:
            # Finished concurrently by another caller.
            return await self._repo.get(checkpoint_id) or cp
        logger.info("checkpoint %s %s", checkpoint_id, outcome.value)
        return updated

    async def cleanup(self, older_than_days: int = CHECKPOINT_CLEANUP_DAYS) -> int:
        """Delete finished checkpoints created more than ``older_than_days`` ago."""
        cutoff = _utc_now() - timedelta(days=older_than_days)
        deleted = await self._repo.delete_finished_before(cutoff, statuses=_FINISHED)
        if deleted:
            logger.info("checkpoint cleanup removed %d records older than %s", deleted, cutoff.isoformat())
        return deleted


class WorkspaceFileStateProvider:
    """
    File-state collaborator for a local workspace directory.

    ``snapshot`` records path, sha256, size and mtime of up to ``max_files``
    files. File contents are not copied, so ``restore`` cannot roll the
    workspace back: it verifies the recorded hashes and reports drift.
    """

    def __init__(
        self,
        root: str | os.PathLike[str],
        *,
        max_files: int = MAX_CHECKPOINT_FILE_STATE,
        ignore_dirs: Sequence[str] = (".git", "node_modules", "__pycache__", ".venv"),
    ) -> None:
        self.root = Path(root)
        self.max_files = max_files
        self.ignore_dirs = frozenset(ignore_dirs)

    @staticmethod
    def _hash(path: Path) -> str:
        h = hashlib.sha256()
        with path.open("rb") as f:
            for chunk in iter(lambda: f.read(65536), b""):
                h.update(chunk)
        return h.hexdigest()

    def _scan(self) -> list[FileSnapshot]:
        out: list[FileSnapshot] = []
        if not self.root.is_dir():
            return out
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames[:] = sorted(d for d in dirnames if d not in self.ignore_dirs)
            for name in sorted(filenames):
                path = Path(dirpath) / name
                try:
                    st = path.stat()
                    digest = self._hash(path)
                except OSError as e:
                    logger.debug("skipping unreadable file %s: %s", path, e)
                    continue
                out.append(
                    FileSnapshot(
                        path=path.relative_to(self.root).as_posix(),
                        content_hash=digest,
                        size=st.st_size,
                        last_modified=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
                    )
                )
                if len(out) >= self.max_files:
                    return out
        return out

    def _drift(self, snapshot: list[FileSnapshot]) -> list[str]:
        drifted: list[str] = []
        for entry in snapshot:
            path = self.root / entry.path
            try:
                if self._hash(path) != entry.content_hash:
                    drifted.append(entry.path)
            except OSError:
                drifted.append(entry.path)
        return drifted

    async def snapshot(self, thread_id: str) -> list[FileSnapshot]:
        return await asyncio.to_thread(self._scan)

    async def restore(self, thread_id: str, snapshot: list[FileSnapshot]) -> None:
        drifted = await asyncio.to_thread(self._drift, snapshot)
        if drifted:
            logger.warning(
                "thread %s: %d of %d checkpointed files changed since the checkpoint: %s",
                thread_id,
                len(drifted),
                len(snapshot),
                ", ".join(drifted[:20]),
            )
