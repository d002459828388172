from __future__ import annotations

"""Subagent supervisor.

A parent agent can delegate a narrow task to a *subagent*: an independent
loop with its own model, its own fixed capability set and a short step
budget. Spawning only records the subagent and queues it; workers pick it up
and run it in the background while the parent keeps going, then the parent
polls for the result.

Lifecycle
---------

::

    pending --execute--> running --> completed | failed
       |                    |
       +------cancel--------+--> failed ("Cancelled by parent")

Every transition is a conditional update on the current status, so statuses
only move forward. A run that finishes after its subagent was cancelled
cannot overwrite the cancellation; its result is discarded. A running loop
re-reads its record before every THINKING phase and stops once it is no
longer ``running``, so a cancel takes effect between loop iterations.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, Optional

from ..core.monitoring import log_subagent_transition
from .capabilities.registry import CapabilityRegistry, FrozenCapabilitySet
from .prompts import build_subagent_prompt
from .repos.interfaces import SubagentRepository
from .runtime.engine import AgentLoopController
from .runtime.models import LoopOptions, StopCheck
from .schemas.domain import TERMINAL_SUBAGENT_STATUSES, Subagent, SubagentStatus

logger = logging.getLogger(__name__)

SUBAGENT_MAX_STEPS = 5
SUBAGENT_LIST_LIMIT = 50
REQUIRED_TOOL = "execute_code"

ControllerFactory = Callable[[FrozenCapabilitySet, LoopOptions], AgentLoopController]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _normalize_tools(tools: Iterable[str]) -> list[str]:
    out = [REQUIRED_TOOL]
    for name in tools:
        if name not in out:
            out.append(name)
    return out


class SubagentQueue:
    """FIFO of subagent ids waiting for a worker."""

    def __init__(self, maxsize: int = 0) -> None:
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize)

    async def put(self, subagent_id: str) -> None:
        await self._queue.put(subagent_id)

    async def get(self) -> str:
        return await self._queue.get()

    def task_done(self) -> None:
        self._queue.task_done()

    async def join(self) -> None:
        await self._queue.join()

    def qsize(self) -> int:
        return self._queue.qsize()


class SubagentSupervisor:
    """Spawn, run, cancel and report on subagents."""

    def __init__(
        self,
        repo: SubagentRepository,
        controller_factory: ControllerFactory,
        registry: CapabilityRegistry,
        queue: SubagentQueue | None = None,
        *,
        max_steps: int = SUBAGENT_MAX_STEPS,
        default_model: str = "balanced",
        run_timeout_s: Optional[float] = None,
    ) -> None:
        """
        Initialize the supervisor.

        Args:
            repo: Persistence for subagent records.
            controller_factory: Builds a loop controller for a capability set and options.
            registry: Resolves tool names into capabilities.
            queue: Where spawned subagents wait for a worker.
            max_steps: THINKING-phase budget of every subagent run.
            default_model: Model or preset used when ``spawn`` gets none.
            run_timeout_s: Wall-clock budget of every subagent run.
        """
        self._repo = repo
        self._controller_factory = controller_factory
        self._registry = registry
        self._queue = queue or SubagentQueue()
        self._max_steps = max_steps
        self._default_model = default_model
        self._run_timeout_s = run_timeout_s

    @property
    def queue(self) -> SubagentQueue:
        return self._queue

    async def spawn(
        self,
        *,
        name: str,
        task: str,
        tools: Iterable[str] = (),
        model: Optional[str] = None,
        parent_thread_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Record a ``pending`` subagent and queue it for execution.

        The call returns as soon as the subagent is queued.

        Raises:
            UnknownCapability: ``tools`` names a capability that is not registered.
        """
        names = _normalize_tools(tools)
        self._registry.resolve(names)

        sub = Subagent(
            parent_thread_id=parent_thread_id,
            name=name,
            task=task,
            tools=names,
            model=model or self._default_model,
        )
        await self._repo.create(sub)
        await self._queue.put(sub.id)
        logger.info(
            "subagent %s (%s) spawned by %s with tools %s",
            sub.id,
            name,
            parent_thread_id,
            names,
            extra={"subagent_id": sub.id, "thread_id": parent_thread_id},
        )
        log_subagent_transition(sub.id, SubagentStatus.pending.value)
        return {"subagentId": sub.id, "status": "spawned", "success": True}

    async def execute(self, subagent_id: str) -> Dict[str, Any]:
        """Run a ``pending`` subagent to completion and record the outcome."""
        sub = await self._repo.get(subagent_id)
        if sub is None:
            return {"success": False, "error": "Subagent not found"}

        started = await self._repo.transition(
            subagent_id,
            from_statuses={SubagentStatus.pending},
            to_status=SubagentStatus.running,
            started_at=_utc_now(),
        )
        if not started:
            current = await self._repo.get(subagent_id)
            status = current.status.value if current is not None else sub.status.value
            logger.info("subagent %s not started: status is %s", subagent_id, status)
            return {"success": False, "error": f"Subagent is {status}"}
        log_subagent_transition(subagent_id, SubagentStatus.running.value)

        try:
            caps = self._registry.resolve(sub.tools)
            controller = self._controller_factory(
                caps,
                LoopOptions(model=sub.model, max_steps=self._max_steps),
            )
            result = await controller.run(
                sub.task,
                system_prompt=build_subagent_prompt(sub.name, sub.task),
                thread_id=sub.id,
                timeout_s=self._run_timeout_s,
                should_stop=self._stop_check(subagent_id),
            )
        except asyncio.CancelledError:
            await self._finish_failed(subagent_id, "Subagent worker stopped")
            raise
        except Exception as e:
            logger.exception("subagent %s failed", subagent_id)
            error = str(e) or type(e).__name__
            await self._finish_failed(subagent_id, error)
            return {"success": False, "error": error}

        payload = {
            "text": result.text,
            "toolCalls": [ce.model_dump(mode="json") for ce in result.code_executions],
            "stopReason": result.stop_reason.value if result.stop_reason else None,
        }
        applied = await self._repo.transition(
            subagent_id,
            from_statuses={SubagentStatus.running},
            to_status=SubagentStatus.completed,
            result=payload,
            completed_at=_utc_now(),
        )
        if not applied:
            logger.info(
                "subagent %s finished after cancellation (stop=%s); result discarded",
                subagent_id,
                payload["stopReason"],
            )
            return {"success": False, "error": "Subagent already finished"}
        log_subagent_transition(subagent_id, SubagentStatus.completed.value)
        return {"success": True}

    def _stop_check(self, subagent_id: str) -> StopCheck:
        async def _cancelled() -> bool:
            current = await self._repo.get(subagent_id)
            return current is None or current.status != SubagentStatus.running

        return _cancelled

    async def _finish_failed(self, subagent_id: str, error: str) -> None:
        applied = await self._repo.transition(
            subagent_id,
            from_statuses={SubagentStatus.running},
            to_status=SubagentStatus.failed,
            error=error,
            completed_at=_utc_now(),
        )
        if applied:
            log_subagent_transition(subagent_id, SubagentStatus.failed.value, error)

    async def cancel(self, subagent_id: str) -> Dict[str, Any]:
        """Fail a pending or running subagent with ``Cancelled by parent``."""
        sub = await self._repo.get(subagent_id)
        if sub is None:
            return {"success": False, "error": "Subagent not found"}
        if sub.status in TERMINAL_SUBAGENT_STATUSES:
            return {"success": False, "error": "Subagent already finished"}

        applied = await self._repo.transition(
            subagent_id,
            from_statuses={SubagentStatus.pending, SubagentStatus.running},
            to_status=SubagentStatus.failed,
            error="Cancelled by parent",
            completed_at=_utc_now(),
        )
        if not applied:
            return {"success": False, "error": "Subagent already finished"}
        logger.info("subagent %s cancelled", subagent_id)
        log_subagent_transition(subagent_id, SubagentStatus.failed.value, "Cancelled by parent")
        return {"success": True}

    async def get_status(self, subagent_id: str) -> Dict[str, Any]:
        sub = await self._repo.get(subagent_id)
        if sub is None:
            return {"found": False, "status": None}
        return {
            "found": True,
            "status": sub.status.value,
            "name": sub.name,
            "task": sub.task,
            "hasError": sub.error is not None,
        }

    async def get_result(self, subagent_id: str) -> Dict[str, Any]:
        sub = await self._repo.get(subagent_id)
        if sub is None:
            return {"found": False, "ready": False, "status": None}
        if sub.status not in TERMINAL_SUBAGENT_STATUSES:
            return {"found": True, "ready": False, "status": sub.status.value}
        return {
            "found": True,
            "ready": True,
            "status": sub.status.value,
            "result": sub.result,
            "error": sub.error,
        }

    async def list(
        self,
        *,
        status: Optional[SubagentStatus] = None,
        parent_thread_id: Optional[str] = None,
        limit: int = SUBAGENT_LIST_LIMIT,
    ) -> list[Subagent]:
        """List subagents, newest first."""
        return await self._repo.list(status=status, parent_thread_id=parent_thread_id, limit=limit)

    async def requeue_pending(self) -> int:
        """Queue every ``pending`` subagent again, e.g. after a restart."""
        pending = await self._repo.list(status=SubagentStatus.pending, limit=1000)
        for sub in reversed(pending):
            await self._queue.put(sub.id)
        if pending:
            logger.info("requeued %d pending subagents", len(pending))
        return len(pending)


class SubagentWorker:
    """Background consumers that execute queued subagents."""

    def __init__(self, supervisor: SubagentSupervisor, queue: SubagentQueue | None = None) -> None:
        self._supervisor = supervisor
        self._queue = queue or supervisor.queue
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    def start(self, concurrency: int = 1) -> None:
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(self._consume(), name=f"subagent-worker-{i}") for i in range(max(concurrency, 1))
        ]
        logger.info("started %d subagent workers", len(self._tasks))

    async def stop(self) -> None:
        for t in self._tasks:
            t.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("subagent workers stopped")

    async def _consume(self) -> None:
        while True:
            subagent_id = await self._queue.get()
            try:
                await self._supervisor.execute(subagent_id)
            except Exception:
                logger.exception("subagent worker failed on %s", subagent_id)
            finally:
                self._queue.task_done()
