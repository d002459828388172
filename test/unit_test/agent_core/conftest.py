from __future__ import annotations

from datetime import datetime
from typing import Any, AsyncIterator, Collection, Dict, List, Optional

import pytest
import pytest_asyncio
from sqlalchemy.pool import StaticPool

from lakitu_ai.agent_core.repos.sql import (
    SqlRepoBundle,
    build_sql_repos,
    create_all,
    create_engine,
    create_sessionmaker,
)
from lakitu_ai.agent_core.schemas.domain import (
    ChainOfThoughtStep,
    Checkpoint,
    CheckpointStatus,
    StepStatus,
    Subagent,
    SubagentStatus,
)

_LIVE = {CheckpointStatus.active, CheckpointStatus.restored}


class _MemStepRepo:
    def __init__(self) -> None:
        self.by_id: Dict[str, ChainOfThoughtStep] = {}

    async def append(self, step: ChainOfThoughtStep) -> ChainOfThoughtStep:
        seqs = [s.seq for s in self.by_id.values() if s.thread_id == step.thread_id]
        stored = step.model_copy(update={"seq": max(seqs, default=0) + 1})
        self.by_id[stored.id] = stored
        return stored.model_copy()

    async def get(self, step_id: str) -> Optional[ChainOfThoughtStep]:
        s = self.by_id.get(step_id)
        return s.model_copy() if s is not None else None

    async def update_status(
        self, step_id: str, *, from_statuses: Collection[StepStatus], to_status: StepStatus
    ) -> bool:
        s = self.by_id.get(step_id)
        if s is None or s.status not in set(from_statuses):
            return False
        self.by_id[step_id] = s.model_copy(update={"status": to_status})
        return True

    async def list(
        self, thread_id: str, *, after_seq: Optional[int] = None, limit: Optional[int] = None
    ) -> List[ChainOfThoughtStep]:
        out = sorted((s for s in self.by_id.values() if s.thread_id == thread_id), key=lambda s: s.seq)
        if after_seq is not None:
            out = [s for s in out if s.seq > after_seq]
        if limit is not None:
            out = out[:limit]
        return [s.model_copy() for s in out]


class _MemCheckpointRepo:
    def __init__(self) -> None:
        self.by_id: Dict[str, Checkpoint] = {}

    async def create_superseding(self, checkpoint: Checkpoint) -> List[str]:
        superseded: List[str] = []
        top = max((cp.iteration for cp in self.by_id.values() if cp.thread_id == checkpoint.thread_id), default=None)
        if top is not None and checkpoint.iteration <= top:
            checkpoint.iteration = top + 1
        for cp in list(self.by_id.values()):
            if cp.thread_id == checkpoint.thread_id and cp.status in _LIVE:
                self.by_id[cp.id] = cp.model_copy(update={"status": CheckpointStatus.superseded})
                superseded.append(cp.id)
        self.by_id[checkpoint.id] = checkpoint.model_copy(
            deep=True, update={"status": CheckpointStatus.active}
        )
        return superseded

    async def get(self, checkpoint_id: str) -> Optional[Checkpoint]:
        cp = self.by_id.get(checkpoint_id)
        return cp.model_copy(deep=True) if cp is not None else None

    def _for_thread(self, thread_id: str) -> List[Checkpoint]:
        return sorted(
            (cp for cp in self.by_id.values() if cp.thread_id == thread_id),
            key=lambda cp: (cp.iteration, cp.created_at),
            reverse=True,
        )

    async def latest_for_thread(self, thread_id: str) -> Optional[Checkpoint]:
        cps = self._for_thread(thread_id)
        return cps[0].model_copy(deep=True) if cps else None

    async def list_for_thread(self, thread_id: str, limit: int = 50) -> List[Checkpoint]:
        return [cp.model_copy(deep=True) for cp in self._for_thread(thread_id)[:limit]]

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
        cp = self.by_id.get(checkpoint_id)
        if cp is None or cp.status not in set(from_statuses):
            return None
        update: Dict[str, Any] = {"status": to_status}
        if restored_at is not None:
            update["restored_at"] = restored_at
        if completed_at is not None:
            update["completed_at"] = completed_at
        if error is not None:
            update["error"] = error
        self.by_id[checkpoint_id] = cp.model_copy(update=update)
        return self.by_id[checkpoint_id].model_copy(deep=True)

    async def delete_finished_before(self, cutoff: datetime, *, statuses: Collection[CheckpointStatus]) -> int:
        doomed = [cp.id for cp in self.by_id.values() if cp.status in set(statuses) and cp.created_at < cutoff]
        for cp_id in doomed:
            del self.by_id[cp_id]
        return len(doomed)


class _MemSubagentRepo:
    def __init__(self) -> None:
        self.by_id: Dict[str, Subagent] = {}

    async def create(self, subagent: Subagent) -> None:
        self.by_id[subagent.id] = subagent.model_copy(deep=True)

    async def get(self, subagent_id: str) -> Optional[Subagent]:
        sub = self.by_id.get(subagent_id)
        return sub.model_copy(deep=True) if sub is not None else None

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
        sub = self.by_id.get(subagent_id)
        if sub is None or sub.status not in set(from_statuses):
            return False
        update: Dict[str, Any] = {"status": to_status}
        for key, value in (
            ("result", result),
            ("error", error),
            ("started_at", started_at),
            ("completed_at", completed_at),
        ):
            if value is not None:
                update[key] = value
        self.by_id[subagent_id] = sub.model_copy(update=update)
        return True

    async def list(
        self,
        *,
        status: Optional[SubagentStatus] = None,
        parent_thread_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[Subagent]:
        subs = [
            s
            for s in self.by_id.values()
            if (status is None or s.status == status)
            and (parent_thread_id is None or s.parent_thread_id == parent_thread_id)
        ]
        subs.sort(key=lambda s: (s.created_at, s.id), reverse=True)
        return [s.model_copy(deep=True) for s in subs[:limit]]


@pytest.fixture
def step_repo() -> _MemStepRepo:
    return _MemStepRepo()


@pytest.fixture
def checkpoint_repo() -> _MemCheckpointRepo:
    return _MemCheckpointRepo()


@pytest.fixture
def subagent_repo() -> _MemSubagentRepo:
    return _MemSubagentRepo()


@pytest_asyncio.fixture
async def sql_repos() -> AsyncIterator[SqlRepoBundle]:
    engine = create_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    await create_all(engine)
    yield build_sql_repos(session_factory=create_sessionmaker(engine))
    await engine.dispose()
