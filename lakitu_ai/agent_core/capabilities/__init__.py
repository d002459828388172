"""Capability registry and capability execution pipeline.

A *capability* is the execution unit behind a tool call.

- The model requests a tool by name through the gateway response.
- The loop resolves that name in the ``FrozenCapabilitySet`` it was built
  with, which the ``CapabilityRegistry`` produced once at construction time.
- The loop executes the capability with a ``CapabilityContext`` and feeds the
  ``ToolResult`` back to the model.

This package exports:

- ``Capability``: protocol for async capability execution.
- ``CodeExecutor``: protocol for the isolated code runner.
- ``CapabilityRegistry``/``FrozenCapabilitySet``: name -> implementation mapping.
- ``ExecuteCodeCapability``/``HttpCodeExecutor``: the built-in code tool.
"""

from .base import Capability, CapabilityContext, CodeExecutor, tool_schema
from .builtin import ExecuteCodeCapability, HttpCodeExecutor
from .registry import CapabilityRegistry, FrozenCapabilitySet

__all__ = [
    "Capability",
    "CapabilityContext",
    "CodeExecutor",
    "tool_schema",
    "ExecuteCodeCapability",
    "HttpCodeExecutor",
    "CapabilityRegistry",
    "FrozenCapabilitySet",
]
