from __future__ import annotations

import asyncio
import time
from typing import Any, AsyncGenerator, Dict, List, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lakitu_ai.agent_core.capabilities.base import CodeExecutor
from lakitu_ai.agent_core.capabilities.builtin import HttpCodeExecutor
from lakitu_ai.agent_core.checkpoints import CheckpointStore, SnapshotProviders, WorkspaceFileStateProvider
from lakitu_ai.agent_core.factory import build_default_registry, build_supervisor
from lakitu_ai.agent_core.gateway.client import ModelGatewayClient
from lakitu_ai.agent_core.repos.sql import SqlRepoBundle, build_sql_repos
from lakitu_ai.agent_core.runtime.models import LoopOptions, ModelGateway
from lakitu_ai.agent_core.schemas.domain import (
    ChainOfThoughtStep,
    Checkpoint,
    CheckpointStatus,
    RunResult,
    Subagent,
    SubagentStatus,
)
from lakitu_ai.agent_core.service import AgentService, AgentServiceDeps
from lakitu_ai.agent_core.subagents import SubagentQueue, SubagentWorker
from lakitu_ai.agent_core.sync_outbox import SyncOutbox
from lakitu_ai.agent_core.trace import StepEmitter
from lakitu_ai.core.logging_config import get_logger
from lakitu_ai.server.core.config import Settings
from lakitu_ai.server.schemas import ErrorEvent, KeepAliveEvent, StepEvent

logger = get_logger(__name__)


class OrchestratorService:
    """
    Service layer for agent runs, checkpoints, step logs and subagents.
    Wires the agent core to the SQL repositories and the configured gateway and executor.
    """

    def __init__(
        self,
        *,
        settings: Optional[Settings] = None,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        gateway: Optional[ModelGateway] = None,
        executor: Optional[CodeExecutor] = None,
    ) -> None:
        if settings is None:
            from lakitu_ai.server.core.config import settings as app_settings

            settings = app_settings
        if session_factory is None:
            from lakitu_ai.server.core.database import async_session_maker

            session_factory = async_session_maker

        self.settings = settings
        gw_cfg = settings.gateway
        ex_cfg = settings.executor
        agent_cfg = settings.agent

        # Build repositories using the session factory
        self.repos: SqlRepoBundle = build_sql_repos(session_factory=session_factory)

        self.gateway: ModelGateway = gateway or ModelGatewayClient(
            gw_cfg.url,
            token=gw_cfg.token,
            path=gw_cfg.path,
            timeout=gw_cfg.timeout,
        )
        self.executor: CodeExecutor = executor or HttpCodeExecutor(ex_cfg.url, token=ex_cfg.token)
        self.registry = build_default_registry(self.executor)

        self.steps = StepEmitter(self.repos.steps)
        self.outbox = SyncOutbox(self.repos.outbox)
        providers = SnapshotProviders(
            files=WorkspaceFileStateProvider(agent_cfg.workspace_dir) if agent_cfg.workspace_dir else None,
        )
        self.checkpoints = CheckpointStore(
            self.repos.checkpoints,
            providers,
            max_messages=agent_cfg.max_checkpoint_messages,
            outbox=self.outbox,
        )

        options = LoopOptions(
            model=agent_cfg.default_model,
            max_steps=agent_cfg.max_steps,
            exec_timeout_ms=agent_cfg.exec_timeout_ms,
        )
        self.agent_service = AgentService(
            deps=AgentServiceDeps(
                gateway=self.gateway,
                registry=self.registry,
                steps=self.steps,
                checkpoints=self.checkpoints,
                options=options,
                run_timeout_ms=agent_cfg.run_timeout_ms,
            )
        )

        self.subagent_queue = SubagentQueue()
        self.supervisor = build_supervisor(
            repo=self.repos.subagents,
            gateway=self.gateway,
            registry=self.registry,
            steps=self.steps,
            checkpoints=self.checkpoints,
            queue=self.subagent_queue,
            base_options=options,
            max_steps=agent_cfg.subagent_max_steps,
            default_model=agent_cfg.default_model,
            run_timeout_s=agent_cfg.run_timeout_ms / 1000 if agent_cfg.run_timeout_ms > 0 else None,
        )
        self.workers = SubagentWorker(self.supervisor, self.subagent_queue)
        self._worker_count = agent_cfg.subagent_workers
        self.started_at = time.monotonic()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Requeue subagents left pending by a previous process and start the workers."""
        try:
            await self.supervisor.requeue_pending()
        except Exception as e:
            logger.error(f"Failed to requeue pending subagents: {e}", exc_info=True)
        self.workers.start(self._worker_count)

    async def stop(self) -> None:
        await self.workers.stop()
        for client in (self.gateway, self.executor):
            aclose = getattr(client, "aclose", None)
            if callable(aclose):
                await aclose()

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    async def run(
        self,
        task: str,
        *,
        system_prompt: Optional[str] = None,
        timeout_ms: Optional[int] = None,
        max_steps: Optional[int] = None,
        model: Optional[str] = None,
        thread_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> RunResult:
        return await self.agent_service.run(
            task,
            system_prompt=system_prompt,
            timeout_ms=timeout_ms,
            max_steps=max_steps,
            model=model,
            thread_id=thread_id,
            session_id=session_id,
        )

    async def resume(
        self,
        checkpoint_id: str,
        *,
        system_prompt: Optional[str] = None,
        timeout_ms: Optional[int] = None,
    ) -> RunResult:
        return await self.agent_service.resume(checkpoint_id, system_prompt=system_prompt, timeout_ms=timeout_ms)

    # ------------------------------------------------------------------
    # Checkpoints
    # ------------------------------------------------------------------

    async def get_checkpoint(self, checkpoint_id: str) -> Optional[Checkpoint]:
        return await self.checkpoints.get(checkpoint_id)

    async def list_checkpoints(self, thread_id: str, limit: int = 50) -> List[Checkpoint]:
        return await self.checkpoints.list_for_thread(thread_id, limit=limit)

    async def complete_checkpoint(
        self, checkpoint_id: str, outcome: CheckpointStatus, error: Optional[str] = None
    ) -> Checkpoint:
        return await self.checkpoints.complete(checkpoint_id, outcome, error=error)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def get_steps(self, thread_id: str, after_seq: Optional[int] = None) -> List[ChainOfThoughtStep]:
        return await self.steps.get_steps(thread_id, after_seq=after_seq)

    async def stream_steps(
        self,
        thread_id: str,
        *,
        poll_interval: float = 0.5,
        max_idle_cycles: int = 120,
    ) -> AsyncGenerator[Union[StepEvent, KeepAliveEvent, ErrorEvent], None]:
        """
        Yield the thread's steps as they are appended or change status.

        Polls the step log; a step is yielded again whenever its status moves.
        The stream closes after ``max_idle_cycles`` polls without changes.
        """
        seen: Dict[str, str] = {}
        idle_cycles = 0

        while True:
            try:
                steps = await self.steps.get_steps(thread_id)
                changed = [s for s in steps if seen.get(s.id) != s.status.value]

                if changed:
                    idle_cycles = 0
                    for step in changed:
                        seen[step.id] = step.status.value
                        yield StepEvent(step=step)
                else:
                    idle_cycles += 1
                    yield KeepAliveEvent()

                    if idle_cycles >= max_idle_cycles:
                        break

                await asyncio.sleep(poll_interval)

            except Exception as e:
                logger.error(f"Error streaming steps for thread {thread_id}: {e}")
                yield ErrorEvent(error=str(e))
                await asyncio.sleep(poll_interval)

    # ------------------------------------------------------------------
    # Subagents
    # ------------------------------------------------------------------

    async def spawn_subagent(
        self,
        *,
        name: str,
        task: str,
        tools: List[str],
        model: Optional[str] = None,
        parent_thread_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        return await self.supervisor.spawn(
            name=name, task=task, tools=tools, model=model, parent_thread_id=parent_thread_id
        )

    async def list_subagents(
        self,
        status: Optional[SubagentStatus] = None,
        parent_thread_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[Subagent]:
        return await self.supervisor.list(status=status, parent_thread_id=parent_thread_id, limit=limit)

    async def subagent_status(self, subagent_id: str) -> Dict[str, Any]:
        return await self.supervisor.get_status(subagent_id)

    async def subagent_result(self, subagent_id: str) -> Dict[str, Any]:
        return await self.supervisor.get_result(subagent_id)

    async def cancel_subagent(self, subagent_id: str) -> Dict[str, Any]:
        return await self.supervisor.cancel(subagent_id)

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    async def metrics(self) -> Dict[str, Any]:
        return {
            "status": "ok",
            "uptime_s": round(time.monotonic() - self.started_at, 3),
            "subagent_queue_depth": self.subagent_queue.qsize(),
            "subagent_workers_running": self.workers.running,
            "outbox": await self.outbox.stats(),
        }


# Global singleton
_orchestrator: Optional[OrchestratorService] = None


def get_orchestrator() -> OrchestratorService:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = OrchestratorService()
    return _orchestrator
