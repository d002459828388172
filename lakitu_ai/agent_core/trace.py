from __future__ import annotations

"""Chain-of-thought step log.

``StepEmitter`` records what the loop is doing, step by step, for each
thread: one ``thinking`` step per model call, one ``tool`` step per tool
execution and one ``text`` step for the final answer.

Steps are stored through a ``StepRepository`` so every process serving the
thread sees the same ordered log. Status transitions are monotonic:

- ``pending`` -> ``active``
- ``active`` -> ``complete`` | ``error``

``complete`` and ``error`` are terminal.
"""

import logging
from typing import Any, Dict, Optional

from .errors import InvalidStepTransition
from .repos.interfaces import StepRepository
from .schemas.domain import ChainOfThoughtStep, StepStatus, StepType

logger = logging.getLogger(__name__)

_ALLOWED_TRANSITIONS: dict[StepStatus, frozenset[StepStatus]] = {
    StepStatus.pending: frozenset({StepStatus.active}),
    StepStatus.active: frozenset({StepStatus.complete, StepStatus.error}),
    StepStatus.complete: frozenset(),
    StepStatus.error: frozenset(),
}


def can_transition(current: StepStatus, requested: StepStatus) -> bool:
    return requested in _ALLOWED_TRANSITIONS[current]


class StepEmitter:
    """Append and update chain-of-thought steps for a thread."""

    def __init__(self, repo: StepRepository) -> None:
        self._repo = repo

    async def emit_step(
        self,
        thread_id: str,
        *,
        type: StepType,
        label: str,
        status: StepStatus = StepStatus.pending,
        tool_name: Optional[str] = None,
        input: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Append a step to the thread's log.

        Returns:
            The new step id.
        """
        step = await self._repo.append(
            ChainOfThoughtStep(
                thread_id=thread_id,
                type=type,
                status=status,
                label=label,
                tool_name=tool_name,
                input=input,
            )
        )
        logger.debug("step %s #%d %s/%s: %s", thread_id, step.seq, type.value, status.value, label[:80])
        return step.id

    async def update_step_status(self, thread_id: str, step_id: str, status: StepStatus) -> None:
        """
        Move a step forward.

        Updating to the status the step already has is a no-op, and so is
        updating an unknown step.

        Raises:
            InvalidStepTransition: The step would move backwards or leave a terminal status.
        """
        # Two rounds: a concurrent writer may have advanced the step between read and write.
        for _ in range(2):
            step = await self._repo.get(step_id)
            if step is None or step.thread_id != thread_id:
                logger.warning("update_step_status: unknown step %s on thread %s", step_id, thread_id)
                return
            if step.status == status:
                return
            if not can_transition(step.status, status):
                raise InvalidStepTransition(step_id, step.status.value, status.value)
            if await self._repo.update_status(step_id, from_statuses={step.status}, to_status=status):
                return
        raise InvalidStepTransition(step_id, step.status.value, status.value)

    async def get_steps(self, thread_id: str, *, after_seq: Optional[int] = None) -> list[ChainOfThoughtStep]:
        """Return the thread's steps ordered by ``seq``."""
        return await self._repo.list(thread_id, after_seq=after_seq)
