from __future__ import annotations

"""Runtime dependency bundle, options and LangGraph state types.

The loop controller is designed to be dependency-injected.

- ``LoopDeps`` collects the gateway, capabilities, step log and checkpoint
  store the controller needs.
- ``LoopOptions`` holds the per-controller knobs (model, budgets, limits).
- ``_LoopSession`` is the mutable record of one run. The controller keeps a
  reference to it, so when the wall-clock timeout cancels the graph it can
  still read the last committed conversation.
- ``_GraphState`` is the state passed between LangGraph nodes.
"""

from dataclasses import dataclass, field
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    NotRequired,
    Optional,
    Protocol,
    Required,
    Sequence,
    TypedDict,
)

from ..capabilities.registry import FrozenCapabilitySet
from ..checkpoints import CheckpointStore
from ..gateway.client import GatewayResponse
from ..schemas.domain import CodeExecution, Message, StopReason, ToolCall
from ..trace import StepEmitter

# Asked before every THINKING phase; a true answer ends the run as ``cancelled``.
StopCheck = Callable[[], Awaitable[bool]]


class ModelGateway(Protocol):
    """What the loop needs from the model gateway client."""

    async def complete(
        self,
        messages: Sequence[Message],
        *,
        tool: Optional[Dict[str, Any]] = None,
        model: Optional[str] = None,
        max_tokens: int = 4096,
        temperature: Optional[float] = None,
    ) -> GatewayResponse: ...


@dataclass(frozen=True)
class LoopDeps:
    """Dependency bundle for ``AgentLoopController``.

    ``capabilities`` is closed for the controller's lifetime: tool calls
    naming anything outside it are answered with ``Unknown tool: <name>``.
    """

    gateway: ModelGateway
    capabilities: FrozenCapabilitySet
    steps: StepEmitter
    checkpoints: CheckpointStore


@dataclass(frozen=True)
class LoopOptions:
    """Per-controller settings.

    ``model`` may be a preset name (``balanced``) or a provider model id.
    ``tool_name`` is the single capability whose schema is offered to the
    model on every call.
    """

    model: str = "balanced"
    model_overrides: Mapping[str, str] = field(default_factory=dict)
    max_steps: int = 10
    exec_timeout_ms: int = 60_000
    max_tokens: int = 4096
    temperature: Optional[float] = None
    output_preview_chars: int = 500
    max_tool_output_chars: int = 50_000
    label_chars: int = 200
    tool_name: str = "execute_code"


@dataclass
class _LoopSession:
    """Mutable record of one run.

    ``messages`` only ever holds *committed* turns: the assistant message and
    the tool feedback of a step are appended together, after every tool
    result of that step was observed.
    """

    thread_id: str
    task: str
    messages: List[Message]
    iteration: int = 0
    session_id: Optional[str] = None
    resumed_from: Optional[str] = None
    should_stop: Optional[StopCheck] = None

    step: int = 0
    code_executions: List[CodeExecution] = field(default_factory=list)
    final_text: str = ""
    retried_empty: bool = False
    stop_reason: Optional[StopReason] = None

    pending_response: Optional[GatewayResponse] = None
    in_flight: Optional[ToolCall] = None
    open_steps: List[str] = field(default_factory=list)


class _GraphState(TypedDict):
    """Mutable LangGraph state for a single loop run.

    Required keys:

    - ``session``: the run's ``_LoopSession``.

    Optional keys:

    - ``_route``: where the last node wants to go next
      (``think``/``execute``/``finish``).
    - ``_start_label``: label of the step emitted by the entry node.
    """

    session: Required[_LoopSession]
    _route: NotRequired[str]
    _start_label: NotRequired[str]
