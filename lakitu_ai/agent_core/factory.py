from __future__ import annotations

"""Convenience factories for wiring the agent core.

This module contains small helpers to build the default capability registry
and instantiate loop controllers and the subagent supervisor from their
collaborators.

The intent is to keep application wiring and tests concise, while still
allowing deployments to provide their own registry, executor and options.
"""

from typing import Optional

from .capabilities.base import CodeExecutor
from .capabilities.builtin import ExecuteCodeCapability
from .capabilities.registry import CapabilityRegistry, FrozenCapabilitySet
from .checkpoints import CheckpointStore
from .repos.interfaces import SubagentRepository
from .runtime.engine import AgentLoopController
from .runtime.models import LoopDeps, LoopOptions, ModelGateway
from .subagents import SUBAGENT_MAX_STEPS, SubagentQueue, SubagentSupervisor
from .trace import StepEmitter


def build_default_registry(executor: CodeExecutor) -> CapabilityRegistry:
    """Build the default ``CapabilityRegistry``.

    The default registry holds the built-in ``execute_code`` capability backed
    by ``executor``.
    """
    reg = CapabilityRegistry()
    reg.register(ExecuteCodeCapability(executor=executor))
    return reg


def build_controller(
    *,
    gateway: ModelGateway,
    capabilities: FrozenCapabilitySet,
    steps: StepEmitter,
    checkpoints: CheckpointStore,
    options: LoopOptions | None = None,
) -> AgentLoopController:
    """Construct an ``AgentLoopController`` from its collaborators."""
    deps = LoopDeps(gateway=gateway, capabilities=capabilities, steps=steps, checkpoints=checkpoints)
    return AgentLoopController(deps, options)


def build_supervisor(
    *,
    repo: SubagentRepository,
    gateway: ModelGateway,
    registry: CapabilityRegistry,
    steps: StepEmitter,
    checkpoints: CheckpointStore,
    queue: SubagentQueue | None = None,
    base_options: LoopOptions | None = None,
    max_steps: int = SUBAGENT_MAX_STEPS,
    default_model: str = "balanced",
    run_timeout_s: Optional[float] = None,
) -> SubagentSupervisor:
    """Construct a ``SubagentSupervisor`` whose subagents share the parent's collaborators.

    Each subagent still gets its own controller, bound to its own frozen
    capability set. ``base_options`` supplies the settings a subagent does not
    override (timeouts, output limits, model overrides).
    """
    base = base_options or LoopOptions()

    def _controller_factory(caps: FrozenCapabilitySet, options: LoopOptions) -> AgentLoopController:
        merged = LoopOptions(
            model=options.model,
            model_overrides=base.model_overrides,
            max_steps=options.max_steps,
            exec_timeout_ms=base.exec_timeout_ms,
            max_tokens=base.max_tokens,
            temperature=base.temperature,
            output_preview_chars=base.output_preview_chars,
            max_tool_output_chars=base.max_tool_output_chars,
            label_chars=base.label_chars,
            tool_name=base.tool_name,
        )
        return build_controller(
            gateway=gateway,
            capabilities=caps,
            steps=steps,
            checkpoints=checkpoints,
            options=merged,
        )

    return SubagentSupervisor(
        repo,
        _controller_factory,
        registry,
        queue,
        max_steps=max_steps,
        default_model=default_model,
        run_timeout_s=run_timeout_s,
    )
