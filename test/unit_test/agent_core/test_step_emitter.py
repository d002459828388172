from __future__ import annotations

import pytest

from lakitu_ai.agent_core.errors import InvalidStepTransition
from lakitu_ai.agent_core.schemas.domain import StepStatus, StepType
from lakitu_ai.agent_core.trace import StepEmitter, can_transition

pytestmark = pytest.mark.asyncio


@pytest.fixture
def emitter(step_repo) -> StepEmitter:
    return StepEmitter(step_repo)


async def test_steps_get_dense_per_thread_seq(emitter: StepEmitter) -> None:
    await emitter.emit_step("thread_a", type=StepType.thinking, label="one")
    await emitter.emit_step("thread_b", type=StepType.thinking, label="other")
    await emitter.emit_step("thread_a", type=StepType.tool, label="two", tool_name="execute_code")

    a = await emitter.get_steps("thread_a")
    b = await emitter.get_steps("thread_b")
    assert [(s.seq, s.label) for s in a] == [(1, "one"), (2, "two")]
    assert [s.seq for s in b] == [1]
    assert a[0].status == StepStatus.pending
    assert a[1].tool_name == "execute_code"


async def test_get_steps_after_seq(emitter: StepEmitter) -> None:
    for i in range(4):
        await emitter.emit_step("thread_a", type=StepType.thinking, label=str(i))
    later = await emitter.get_steps("thread_a", after_seq=2)
    assert [s.label for s in later] == ["2", "3"]


async def test_forward_transitions(emitter: StepEmitter) -> None:
    step_id = await emitter.emit_step("thread_a", type=StepType.thinking, label="x")
    await emitter.update_step_status("thread_a", step_id, StepStatus.active)
    await emitter.update_step_status("thread_a", step_id, StepStatus.complete)
    assert (await emitter.get_steps("thread_a"))[0].status == StepStatus.complete


async def test_same_status_is_noop(emitter: StepEmitter) -> None:
    step_id = await emitter.emit_step("thread_a", type=StepType.thinking, label="x", status=StepStatus.complete)
    await emitter.update_step_status("thread_a", step_id, StepStatus.complete)


@pytest.mark.parametrize(
    "start,requested",
    [
        (StepStatus.complete, StepStatus.active),
        (StepStatus.error, StepStatus.complete),
        (StepStatus.active, StepStatus.pending),
        (StepStatus.pending, StepStatus.complete),
        (StepStatus.pending, StepStatus.error),
    ],
)
async def test_disallowed_transition_raises(emitter: StepEmitter, start, requested) -> None:
    step_id = await emitter.emit_step("thread_a", type=StepType.tool, label="x", status=start)
    with pytest.raises(InvalidStepTransition):
        await emitter.update_step_status("thread_a", step_id, requested)
    assert (await emitter.get_steps("thread_a"))[0].status == start


async def test_unknown_step_is_ignored(emitter: StepEmitter) -> None:
    await emitter.update_step_status("thread_a", "step_missing", StepStatus.complete)


async def test_step_of_other_thread_is_ignored(emitter: StepEmitter) -> None:
    step_id = await emitter.emit_step("thread_a", type=StepType.thinking, label="x", status=StepStatus.active)
    await emitter.update_step_status("thread_b", step_id, StepStatus.complete)
    assert (await emitter.get_steps("thread_a"))[0].status == StepStatus.active


async def test_transition_table() -> None:
    assert can_transition(StepStatus.pending, StepStatus.active)
    assert not can_transition(StepStatus.pending, StepStatus.complete)
    assert not can_transition(StepStatus.pending, StepStatus.error)
    assert can_transition(StepStatus.active, StepStatus.complete)
    assert not can_transition(StepStatus.complete, StepStatus.error)
    assert not can_transition(StepStatus.active, StepStatus.active)
