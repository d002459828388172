"""Error types raised by the agent core.

Purpose:
- Provide typed exceptions for the failure modes the loop, the checkpoint
  store and the subagent supervisor surface to their callers.
- Expose HTTP-oriented context (status code, error body) for gateway failures
  so callers can diagnose them.

Usage:
- Catch ``LakituError`` for any agent-core failure.
- ``GatewayUnavailable``/``GatewayRequestFailed`` abort a run. They are never
  retried inside the loop.
- ``CheckpointNotFound``/``CheckpointAlreadyTerminal``/``CheckpointInUse`` are caller errors.
"""

from __future__ import annotations

from typing import Any, Optional


class LakituError(Exception):
    """Base error for all agent-core failures."""


class GatewayUnavailable(LakituError):
    """The model gateway is not configured or could not be reached."""


class GatewayRequestFailed(LakituError):
    """The model gateway answered with a non-success status or an error payload.

    Args:
        message: Human-readable error description.
        status_code: Optional HTTP status code associated with the failure.
        details: Optional structured payload from the server (e.g., JSON body).
    """

    def __init__(self, message: str, *, status_code: Optional[int] = None, details: Optional[Any] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.details = details


class ExecutorUnavailable(LakituError):
    """The code executor is not configured or could not be reached."""


class CheckpointNotFound(LakituError):
    def __init__(self, checkpoint_id: str) -> None:
        super().__init__(f"checkpoint not found: {checkpoint_id}")
        self.checkpoint_id = checkpoint_id


class CheckpointAlreadyTerminal(LakituError):
    def __init__(self, checkpoint_id: str, status: str) -> None:
        super().__init__(f"checkpoint {checkpoint_id} is already {status}")
        self.checkpoint_id = checkpoint_id
        self.status = status


class SubagentNotFound(LakituError):
    def __init__(self, subagent_id: str) -> None:
        super().__init__(f"subagent not found: {subagent_id}")
        self.subagent_id = subagent_id


class InvalidStepTransition(LakituError):
    """A chain-of-thought step was asked to move backwards or out of a terminal status."""

    def __init__(self, step_id: str, current: str, requested: str) -> None:
        super().__init__(f"step {step_id}: cannot transition {current} -> {requested}")
        self.step_id = step_id
        self.current = current
        self.requested = requested


class UnknownCapability(LakituError):
    def __init__(self, name: str) -> None:
        super().__init__(f"unknown capability: {name}")
        self.name = name


class CheckpointInUse(LakituError):
    """Another resume of the same checkpoint is still running in this process."""

    def __init__(self, checkpoint_id: str) -> None:
        super().__init__(f"checkpoint {checkpoint_id} is already being resumed")
        self.checkpoint_id = checkpoint_id
