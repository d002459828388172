from __future__ import annotations

"""Capability protocol and execution data models.

A capability is the concrete execution unit behind a tool call.

The loop controller resolves a ``ToolCall.tool_name`` through the frozen
capability set it was built with and executes the implementation with a
``CapabilityContext``.

Capabilities should:

- return structured outcomes as ``ToolResult`` instead of raising for
  ordinary failures (a failed program is a result, not an exception),
- expose the JSON schema of their arguments so the tool schema offered to
  the model can be derived from the capability itself.
"""

from dataclasses import dataclass
from typing import Any, Dict, Protocol

from ..schemas.domain import ToolResult


@dataclass(frozen=True)
class CapabilityContext:
    """Execution context passed to capability implementations.

    Attributes
    ----------
    thread_id:
        The thread whose loop requested the call.
    timeout_ms:
        Upper bound the capability should pass on to its executor.
    """

    thread_id: str
    timeout_ms: int = 60_000


class Capability(Protocol):
    """Protocol for capability implementations."""

    name: str
    description: str
    parameters: Dict[str, Any]

    async def execute(self, ctx: CapabilityContext, *, args: Dict[str, Any]) -> ToolResult: ...


class CodeExecutor(Protocol):
    """Runs a code string in an isolated environment with a bounded time."""

    async def execute(self, code: str, *, timeout_ms: int) -> ToolResult: ...


def tool_schema(cap: Capability) -> Dict[str, Any]:
    """Build the function-tool schema the gateway offers to the model."""
    return {
        "type": "function",
        "function": {
            "name": cap.name,
            "description": cap.description,
            "parameters": cap.parameters,
        },
    }
