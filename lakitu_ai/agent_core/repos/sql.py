from __future__ import annotations

"""SQLAlchemy async repository implementations.

This module provides a Postgres-backed persistence implementation for the
repository interfaces defined in ``lakitu_ai.agent_core.repos.interfaces``.

Usage
-----

Typical wiring (tests or application setup):

- Create an async engine with ``create_engine``.
- Create tables with ``create_all``.
- Create a session factory with ``create_sessionmaker``.
- Build repository instances with ``build_sql_repos``.

Transaction model
-----------------

Each repository method opens an ``AsyncSession``, performs its operation, and
commits. Read-modify-write operations (status transitions, checkpoint
supersession) run inside that single transaction: either as a conditional
``UPDATE ... WHERE status IN (...)`` or behind ``SELECT ... FOR UPDATE``
(ignored by SQLite, which serializes writers anyway).
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Collection, Dict, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

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
from .interfaces import (
    CheckpointRepository,
    OutboxRepository,
    StepRepository,
    SubagentRepository,
)
from .models import Base, CheckpointRow, OutboxRow, StepRow, SubagentRow

logger = logging.getLogger(__name__)

_APPEND_ATTEMPTS = 3


def create_engine(db_url: str, **kwargs: Any) -> AsyncEngine:
    """Create an async SQLAlchemy engine.

    The helper normalizes Postgres URLs to ensure the async driver is used.
    For example, it rewrites ``postgresql://`` and other variants to
    ``postgresql+asyncpg://``. Extra keyword arguments go to
    ``create_async_engine`` (e.g. ``poolclass`` for in-memory SQLite).
    """
    url = re.sub(r"^postgres(?:ql)?(?:\+[a-z0-9_]+)?://", "postgresql+asyncpg://", db_url, count=1)
    if url.startswith("postgresql+asyncpg://"):
        kwargs.setdefault("pool_pre_ping", True)
    return create_async_engine(url, **kwargs)


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an ``async_sessionmaker`` with safe defaults for this project."""
    return async_sessionmaker(engine, expire_on_commit=False)


async def create_all(engine: AsyncEngine) -> None:
    """Create all tables for the current ORM metadata."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def _values(statuses: Collection[Any]) -> list[str]:
    return [str(getattr(s, "value", s)) for s in statuses]


# ----------------------------------------------------------------------------
# Row <-> domain conversion
# ----------------------------------------------------------------------------


def _row_to_step(row: StepRow) -> ChainOfThoughtStep:
    return ChainOfThoughtStep(
        id=row.id,
        thread_id=row.thread_id,
        seq=row.seq,
        type=row.type,
        status=row.status,
        label=row.label,
        tool_name=row.tool_name,
        input=row.input,
        timestamp=row.timestamp,
    )


def _checkpoint_to_row(cp: Checkpoint) -> CheckpointRow:
    return CheckpointRow(
        id=cp.id,
        thread_id=cp.thread_id,
        session_id=cp.session_id,
        iteration=cp.iteration,
        next_task=cp.next_task,
        reason=cp.reason.value,
        status=cp.status.value,
        message_history=[m.model_dump(mode="json") for m in cp.message_history],
        file_state=[f.model_dump(mode="json") for f in cp.file_state],
        beads_state=[b.model_dump(mode="json") for b in cp.beads_state],
        artifacts_produced=list(cp.artifacts_produced),
        meta=dict(cp.metadata),
        created_at=cp.created_at,
        restored_at=cp.restored_at,
        completed_at=cp.completed_at,
        error=cp.error,
    )


def _row_to_checkpoint(row: CheckpointRow) -> Checkpoint:
    return Checkpoint(
        id=row.id,
        thread_id=row.thread_id,
        session_id=row.session_id,
        iteration=row.iteration,
        next_task=row.next_task,
        reason=row.reason,
        status=row.status,
        message_history=list(row.message_history or []),
        file_state=list(row.file_state or []),
        beads_state=list(row.beads_state or []),
        artifacts_produced=list(row.artifacts_produced or []),
        metadata=dict(row.meta or {}),
        created_at=row.created_at,
        restored_at=row.restored_at,
        completed_at=row.completed_at,
        error=row.error,
    )


def _row_to_subagent(row: SubagentRow) -> Subagent:
    return Subagent(
        id=row.id,
        parent_thread_id=row.parent_thread_id,
        name=row.name,
        task=row.task,
        tools=list(row.tools or []),
        model=row.model,
        status=row.status,
        result=row.result,
        error=row.error,
        created_at=row.created_at,
        started_at=row.started_at,
        completed_at=row.completed_at,
    )


def _row_to_outbox(row: OutboxRow) -> SyncOutboxItem:
    return SyncOutboxItem(
        id=row.id,
        idempotency_key=row.idempotency_key,
        entity_type=row.entity_type,
        entity_id=row.entity_id,
        operation=row.operation,
        payload=dict(row.payload or {}),
        cloud_path=row.cloud_path,
        status=row.status,
        attempts=row.attempts,
        max_attempts=row.max_attempts,
        priority=row.priority,
        session_id=row.session_id,
        thread_id=row.thread_id,
        cloud_id=row.cloud_id,
        last_error=row.last_error,
        created_at=row.created_at,
        last_attempt_at=row.last_attempt_at,
        synced_at=row.synced_at,
    )


# ----------------------------------------------------------------------------
# Repositories
# ----------------------------------------------------------------------------


@dataclass(frozen=True)
class SqlStepRepository(StepRepository):
    """SQL implementation of ``StepRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def append(self, step: ChainOfThoughtStep) -> ChainOfThoughtStep:
        """
        Persist a new step with the next ``seq`` of its thread.

        A concurrent append for the same thread trips the ``(thread_id, seq)``
        unique constraint; the append is then retried with a fresh ``seq``.
        """
        attempt = 0
        while True:
            attempt += 1
            async with self.session_factory() as s:
                last = (
                    await s.execute(select(func.max(StepRow.seq)).where(StepRow.thread_id == step.thread_id))
                ).scalar_one_or_none()
                stored = step.model_copy(update={"seq": (last or 0) + 1})
                s.add(
                    StepRow(
                        id=stored.id,
                        thread_id=stored.thread_id,
                        seq=stored.seq,
                        type=stored.type.value,
                        status=stored.status.value,
                        label=stored.label,
                        tool_name=stored.tool_name,
                        input=stored.input,
                        timestamp=stored.timestamp,
                    )
                )
                try:
                    await s.commit()
                except IntegrityError:
                    await s.rollback()
                    if attempt == _APPEND_ATTEMPTS:
                        raise
                    logger.debug("step seq collision on thread %s, retrying", step.thread_id)
                    continue
                return stored

    async def get(self, step_id: str) -> Optional[ChainOfThoughtStep]:
        async with self.session_factory() as s:
            row = await s.get(StepRow, step_id)
            return _row_to_step(row) if row is not None else None

    async def update_status(
        self, step_id: str, *, from_statuses: Collection[StepStatus], to_status: StepStatus
    ) -> bool:
        async with self.session_factory() as s:
            res = await s.execute(
                update(StepRow)
                .where(StepRow.id == step_id, StepRow.status.in_(_values(from_statuses)))
                .values(status=to_status.value)
            )
            await s.commit()
            return bool(res.rowcount)

    async def list(
        self, thread_id: str, *, after_seq: Optional[int] = None, limit: Optional[int] = None
    ) -> list[ChainOfThoughtStep]:
        async with self.session_factory() as s:
            stmt = select(StepRow).where(StepRow.thread_id == thread_id)
            if after_seq is not None:
                stmt = stmt.where(StepRow.seq > after_seq)
            stmt = stmt.order_by(StepRow.seq.asc())
            if limit is not None:
                stmt = stmt.limit(limit)
            rows = (await s.execute(stmt)).scalars().all()
            return [_row_to_step(r) for r in rows]


@dataclass(frozen=True)
class SqlCheckpointRepository(CheckpointRepository):
    """SQL implementation of ``CheckpointRepository``.

    ``create_superseding`` locks the thread's live checkpoints, supersedes
    them and inserts the new one in one transaction. Inside that transaction
    the new checkpoint's iteration is raised past the thread's highest one
    when another writer got there first. The partial unique index
    ``uq_lk_checkpoints_one_active`` rejects a second concurrent ``active``
    row for the same thread.
    """

    session_factory: async_sessionmaker[AsyncSession]

    async def create_superseding(self, checkpoint: Checkpoint) -> list[str]:
        """
        Supersede the thread's live checkpoints and insert ``checkpoint``.

        Another process inserting an ``active`` row for the same thread at the
        same time trips the partial unique index; the whole transaction is
        then retried so the newcomer supersedes it.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self._create_superseding_once(checkpoint)
            except IntegrityError:
                if attempt >= _APPEND_ATTEMPTS:
                    raise
                logger.debug("concurrent checkpoint for thread %s, retrying", checkpoint.thread_id)

    async def _create_superseding_once(self, checkpoint: Checkpoint) -> list[str]:
        async with self.session_factory() as s:
            live = (
                (
                    await s.execute(
                        select(CheckpointRow)
                        .where(
                            CheckpointRow.thread_id == checkpoint.thread_id,
                            CheckpointRow.status.in_(
                                _values((CheckpointStatus.active, CheckpointStatus.restored))
                            ),
                        )
                        .with_for_update()
                    )
                )
                .scalars()
                .all()
            )
            top = await s.scalar(
                select(func.max(CheckpointRow.iteration)).where(CheckpointRow.thread_id == checkpoint.thread_id)
            )
            if top is not None and checkpoint.iteration <= top:
                checkpoint.iteration = top + 1
            for row in live:
                row.status = CheckpointStatus.superseded.value
            # The superseded rows must leave 'active' before the new row is inserted.
            await s.flush()
            s.add(_checkpoint_to_row(checkpoint))
            await s.commit()
            return [row.id for row in live]

    async def get(self, checkpoint_id: str) -> Optional[Checkpoint]:
        async with self.session_factory() as s:
            row = await s.get(CheckpointRow, checkpoint_id)
            return _row_to_checkpoint(row) if row is not None else None

    async def latest_for_thread(self, thread_id: str) -> Optional[Checkpoint]:
        async with self.session_factory() as s:
            stmt = (
                select(CheckpointRow)
                .where(CheckpointRow.thread_id == thread_id)
                .order_by(CheckpointRow.iteration.desc(), CheckpointRow.created_at.desc())
                .limit(1)
            )
            row = (await s.execute(stmt)).scalar_one_or_none()
            return _row_to_checkpoint(row) if row is not None else None

    async def list_for_thread(self, thread_id: str, limit: int = 50) -> list[Checkpoint]:
        async with self.session_factory() as s:
            stmt = (
                select(CheckpointRow)
                .where(CheckpointRow.thread_id == thread_id)
                .order_by(CheckpointRow.iteration.desc(), CheckpointRow.created_at.desc())
                .limit(limit)
            )
            rows = (await s.execute(stmt)).scalars().all()
            return [_row_to_checkpoint(r) for r in rows]

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
        values: Dict[str, Any] = {"status": to_status.value}
        if restored_at is not None:
            values["restored_at"] = restored_at
        if completed_at is not None:
            values["completed_at"] = completed_at
        if error is not None:
            values["error"] = error

        async with self.session_factory() as s:
            res = await s.execute(
                update(CheckpointRow)
                .where(CheckpointRow.id == checkpoint_id, CheckpointRow.status.in_(_values(from_statuses)))
                .values(**values)
            )
            await s.commit()
            if not res.rowcount:
                return None
            row = await s.get(CheckpointRow, checkpoint_id, populate_existing=True)
            return _row_to_checkpoint(row) if row is not None else None

    async def delete_finished_before(self, cutoff: datetime, *, statuses: Collection[CheckpointStatus]) -> int:
        async with self.session_factory() as s:
            res = await s.execute(
                delete(CheckpointRow).where(
                    CheckpointRow.created_at < cutoff,
                    CheckpointRow.status.in_(_values(statuses)),
                )
            )
            await s.commit()
            return int(res.rowcount or 0)


@dataclass(frozen=True)
class SqlSubagentRepository(SubagentRepository):
    """SQL implementation of ``SubagentRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def create(self, subagent: Subagent) -> None:
        async with self.session_factory() as s:
            s.add(
                SubagentRow(
                    id=subagent.id,
                    parent_thread_id=subagent.parent_thread_id,
                    name=subagent.name,
                    task=subagent.task,
                    tools=list(subagent.tools),
                    model=subagent.model,
                    status=subagent.status.value,
                    result=subagent.result,
                    error=subagent.error,
                    created_at=subagent.created_at,
                    started_at=subagent.started_at,
                    completed_at=subagent.completed_at,
                )
            )
            await s.commit()

    async def get(self, subagent_id: str) -> Optional[Subagent]:
        async with self.session_factory() as s:
            row = await s.get(SubagentRow, subagent_id)
            return _row_to_subagent(row) if row is not None else None

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
        values: Dict[str, Any] = {"status": to_status.value}
        if result is not None:
            values["result"] = result
        if error is not None:
            values["error"] = error
        if started_at is not None:
            values["started_at"] = started_at
        if completed_at is not None:
            values["completed_at"] = completed_at

        async with self.session_factory() as s:
            res = await s.execute(
                update(SubagentRow)
                .where(SubagentRow.id == subagent_id, SubagentRow.status.in_(_values(from_statuses)))
                .values(**values)
            )
            await s.commit()
            return bool(res.rowcount)

    async def list(
        self,
        *,
        status: Optional[SubagentStatus] = None,
        parent_thread_id: Optional[str] = None,
        limit: int = 50,
    ) -> list[Subagent]:
        async with self.session_factory() as s:
            stmt = select(SubagentRow)
            if status is not None:
                stmt = stmt.where(SubagentRow.status == status.value)
            if parent_thread_id is not None:
                stmt = stmt.where(SubagentRow.parent_thread_id == parent_thread_id)
            stmt = stmt.order_by(SubagentRow.created_at.desc(), SubagentRow.id.desc()).limit(limit)
            rows = (await s.execute(stmt)).scalars().all()
            return [_row_to_subagent(r) for r in rows]


@dataclass(frozen=True)
class SqlOutboxRepository(OutboxRepository):
    """SQL implementation of ``OutboxRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def _id_for_key(self, s: AsyncSession, key: str) -> Optional[str]:
        return (await s.execute(select(OutboxRow.id).where(OutboxRow.idempotency_key == key))).scalar_one_or_none()

    async def add(self, item: SyncOutboxItem) -> str:
        async with self.session_factory() as s:
            existing = await self._id_for_key(s, item.idempotency_key)
            if existing is not None:
                return existing
            s.add(
                OutboxRow(
                    id=item.id,
                    idempotency_key=item.idempotency_key,
                    entity_type=item.entity_type,
                    entity_id=item.entity_id,
                    operation=item.operation.value,
                    payload=item.payload,
                    cloud_path=item.cloud_path,
                    status=item.status.value,
                    attempts=item.attempts,
                    max_attempts=item.max_attempts,
                    priority=item.priority,
                    session_id=item.session_id,
                    thread_id=item.thread_id,
                    created_at=item.created_at,
                )
            )
            try:
                await s.commit()
            except IntegrityError:
                # Lost a race on the same idempotency key.
                await s.rollback()
                existing = await self._id_for_key(s, item.idempotency_key)
                if existing is None:
                    raise
                return existing
            return item.id

    async def get(self, item_id: str) -> Optional[SyncOutboxItem]:
        async with self.session_factory() as s:
            row = await s.get(OutboxRow, item_id)
            return _row_to_outbox(row) if row is not None else None

    async def pending(self, *, limit: int = 50, session_id: Optional[str] = None) -> list[SyncOutboxItem]:
        async with self.session_factory() as s:
            stmt = select(OutboxRow).where(OutboxRow.status == OutboxStatus.pending.value)
            if session_id is not None:
                stmt = stmt.where(OutboxRow.session_id == session_id)
            stmt = stmt.order_by(OutboxRow.priority.asc(), OutboxRow.created_at.asc()).limit(limit)
            rows = (await s.execute(stmt)).scalars().all()
            return [_row_to_outbox(r) for r in rows]

    async def mark_syncing(self, item_id: str, *, at: datetime) -> Optional[SyncOutboxItem]:
        async with self.session_factory() as s:
            row = await s.get(OutboxRow, item_id, with_for_update=True)
            if row is None:
                return None
            before = _row_to_outbox(row)
            row.status = OutboxStatus.syncing.value
            row.attempts = row.attempts + 1
            row.last_attempt_at = at
            await s.commit()
            return before

    async def mark_synced(self, item_id: str, *, cloud_id: Optional[str], at: datetime) -> None:
        async with self.session_factory() as s:
            await s.execute(
                update(OutboxRow)
                .where(OutboxRow.id == item_id)
                .values(status=OutboxStatus.synced.value, synced_at=at, cloud_id=cloud_id)
            )
            await s.commit()

    async def mark_failed(self, item_id: str, *, error: str, at: datetime) -> Optional[OutboxStatus]:
        async with self.session_factory() as s:
            row = await s.get(OutboxRow, item_id, with_for_update=True)
            if row is None:
                return None
            status = OutboxStatus.failed if row.attempts >= row.max_attempts else OutboxStatus.pending
            row.status = status.value
            row.last_error = error
            row.last_attempt_at = at
            await s.commit()
            return status

    async def count_by(self, *, session_id: Optional[str] = None) -> list[tuple[str, str, int]]:
        async with self.session_factory() as s:
            stmt = select(OutboxRow.entity_type, OutboxRow.status, func.count()).group_by(
                OutboxRow.entity_type, OutboxRow.status
            )
            if session_id is not None:
                stmt = stmt.where(OutboxRow.session_id == session_id)
            rows = (await s.execute(stmt)).all()
            return [(str(et), str(st), int(n)) for et, st, n in rows]

    async def delete_synced_before(self, cutoff: datetime) -> int:
        async with self.session_factory() as s:
            res = await s.execute(
                delete(OutboxRow).where(
                    OutboxRow.status == OutboxStatus.synced.value,
                    OutboxRow.synced_at.is_not(None),
                    OutboxRow.synced_at < cutoff,
                )
            )
            await s.commit()
            return int(res.rowcount or 0)

    async def reset_failed(self, *, entity_type: Optional[str] = None) -> int:
        async with self.session_factory() as s:
            stmt = update(OutboxRow).where(OutboxRow.status == OutboxStatus.failed.value)
            if entity_type is not None:
                stmt = stmt.where(OutboxRow.entity_type == entity_type)
            res = await s.execute(stmt.values(status=OutboxStatus.pending.value, attempts=0, last_error=None))
            await s.commit()
            return int(res.rowcount or 0)


@dataclass(frozen=True)
class SqlRepoBundle:
    """Convenience bundle of all SQL repositories for dependency injection."""

    steps: SqlStepRepository
    checkpoints: SqlCheckpointRepository
    subagents: SqlSubagentRepository
    outbox: SqlOutboxRepository


def build_sql_repos(*, session_factory: async_sessionmaker[AsyncSession]) -> SqlRepoBundle:
    """Build a ``SqlRepoBundle`` from a session factory."""
    return SqlRepoBundle(
        steps=SqlStepRepository(session_factory=session_factory),
        checkpoints=SqlCheckpointRepository(session_factory=session_factory),
        subagents=SqlSubagentRepository(session_factory=session_factory),
        outbox=SqlOutboxRepository(session_factory=session_factory),
    )
