from __future__ import annotations

"""High-level orchestration service for agent runs.

``AgentService`` provides an application-friendly API for running the
code-execution loop without wiring a controller by hand.

Workflow
--------

- ``run``:

  1. Applies per-call overrides (model, step budget) to the base options.
  2. Builds an ``AgentLoopController`` over the full capability registry.
  3. Runs the task, checkpointing on timeout, and returns the ``RunResult``.

- ``resume``:

  1. Builds an ``AgentLoopController``.
  2. Continues the thread from the given checkpoint.

``AgentService`` is intentionally thin: loop semantics live in the
controller, checkpoint semantics in the ``CheckpointStore``.
"""

from dataclasses import dataclass, field, replace
from typing import Optional

from .capabilities.registry import CapabilityRegistry
from .checkpoints import CheckpointStore
from .runtime.models import LoopOptions, ModelGateway
from .schemas.domain import RunResult
from .trace import StepEmitter


@dataclass(frozen=True)
class AgentServiceDeps:
    """Dependency bundle for ``AgentService``.

    ``options`` are the defaults every run starts from; ``run`` may override
    the model and the step budget per call.
    """

    gateway: ModelGateway
    registry: CapabilityRegistry
    steps: StepEmitter
    checkpoints: CheckpointStore
    options: LoopOptions = field(default_factory=LoopOptions)
    run_timeout_ms: Optional[int] = None


def _timeout_s(timeout_ms: Optional[int]) -> Optional[float]:
    if timeout_ms is None or timeout_ms <= 0:
        return None
    return timeout_ms / 1000


class AgentService:
    """Run and resume agent threads."""

    def __init__(self, *, deps: AgentServiceDeps) -> None:
        self._deps = deps

    @property
    def deps(self) -> AgentServiceDeps:
        return self._deps

    def _controller(self, options: LoopOptions):
        from .factory import build_controller

        d = self._deps
        return build_controller(
            gateway=d.gateway,
            capabilities=d.registry.resolve(d.registry.names()),
            steps=d.steps,
            checkpoints=d.checkpoints,
            options=options,
        )

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
        """Run ``task`` on a new or existing thread.

        ``timeout_ms`` falls back to the service default; a non-positive value
        disables the wall-clock budget.
        """
        options = self._deps.options
        if max_steps is not None:
            options = replace(options, max_steps=max_steps)
        if model:
            options = replace(options, model=model)

        controller = self._controller(options)
        return await controller.run(
            task,
            system_prompt=system_prompt,
            thread_id=thread_id,
            timeout_s=_timeout_s(timeout_ms if timeout_ms is not None else self._deps.run_timeout_ms),
            session_id=session_id,
        )

    async def resume(
        self,
        checkpoint_id: str,
        *,
        system_prompt: Optional[str] = None,
        timeout_ms: Optional[int] = None,
    ) -> RunResult:
        """Continue a thread from ``checkpoint_id``."""
        controller = self._controller(self._deps.options)
        return await controller.resume(
            checkpoint_id,
            system_prompt=system_prompt,
            timeout_s=_timeout_s(timeout_ms if timeout_ms is not None else self._deps.run_timeout_ms),
        )
