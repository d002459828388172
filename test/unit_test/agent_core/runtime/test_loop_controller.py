from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import pytest

from lakitu_ai.agent_core.capabilities.base import CapabilityContext
from lakitu_ai.agent_core.capabilities.registry import CapabilityRegistry
from lakitu_ai.agent_core.checkpoints import CheckpointStore
from lakitu_ai.agent_core.errors import (
    CheckpointAlreadyTerminal,
    CheckpointInUse,
    CheckpointNotFound,
    GatewayUnavailable,
)
from lakitu_ai.agent_core.gateway.client import GatewayResponse
from lakitu_ai.agent_core.prompts import CONTINUE_INSTRUCTION, EMPTY_RESPONSE_REPROMPT, RESUME_PREFIX
from lakitu_ai.agent_core.runtime.engine import AgentLoopController, truncate_output
from lakitu_ai.agent_core.runtime.models import LoopDeps, LoopOptions
from lakitu_ai.agent_core.schemas.domain import (
    CheckpointReason,
    CheckpointStatus,
    Message,
    MessageRole,
    RunStatus,
    StepStatus,
    StepType,
    StopReason,
    ToolCall,
    ToolResult,
)
from lakitu_ai.agent_core.trace import StepEmitter

_Scripted = Union[GatewayResponse, Exception]


class _ScriptedGateway:
    def __init__(self, script: Sequence[_Scripted]) -> None:
        self._script = list(script)
        self.calls: List[Dict[str, Any]] = []

    async def complete(self, messages, *, tool=None, model=None, max_tokens=4096, temperature=None):
        self.calls.append({"messages": list(messages), "tool": tool, "model": model})
        item = self._script.pop(0) if len(self._script) > 1 else self._script[0]
        if isinstance(item, Exception):
            raise item
        return item


@dataclass
class _CodeCapability:
    handler: Callable[[str], Any] = lambda code: ToolResult(success=True, output=f"ran {code}")
    name: str = "execute_code"
    description: str = "Execute code in the sandbox."
    parameters: Dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {"code": {"type": "string"}}, "required": ["code"]}
    )
    calls: List[str] = field(default_factory=list)

    async def execute(self, ctx: CapabilityContext, *, args: Dict[str, Any]) -> ToolResult:
        self.calls.append(args.get("code", ""))
        out = self.handler(args.get("code", ""))
        if asyncio.iscoroutine(out):
            out = await out
        return out


def _tool(code: str, text: str = "") -> GatewayResponse:
    return GatewayResponse(text=text, tool_calls=[ToolCall(tool_name="execute_code", args={"code": code})])


def _answer(text: str) -> GatewayResponse:
    return GatewayResponse(text=text)


@pytest.fixture
def steps(step_repo) -> StepEmitter:
    return StepEmitter(step_repo)


@pytest.fixture
def store(checkpoint_repo) -> CheckpointStore:
    return CheckpointStore(checkpoint_repo)


def _controller(
    gateway: _ScriptedGateway,
    steps: StepEmitter,
    store: CheckpointStore,
    cap: Optional[_CodeCapability] = None,
    **opts: Any,
) -> AgentLoopController:
    reg = CapabilityRegistry()
    reg.register(cap or _CodeCapability())
    deps = LoopDeps(gateway=gateway, capabilities=reg.resolve(["execute_code"]), steps=steps, checkpoints=store)
    return AgentLoopController(deps, LoopOptions(**opts))


@pytest.mark.asyncio
async def test_plain_answer_completes_after_one_step(steps, store) -> None:
    gw = _ScriptedGateway([_answer("All done.")])
    ctl = _controller(gw, steps, store)

    res = await ctl.run("say hi", thread_id="thread_a")

    assert res.status == RunStatus.completed
    assert res.stop_reason == StopReason.final_answer
    assert res.text == "All done."
    assert res.steps_taken == 1
    assert res.checkpoint_id is None

    log = await steps.get_steps("thread_a")
    assert [(s.type, s.status) for s in log] == [
        (StepType.thinking, StepStatus.complete),
        (StepType.thinking, StepStatus.complete),
        (StepType.text, StepStatus.complete),
    ]
    assert log[0].label == "Starting code execution loop..."
    assert log[1].label == "Step 1: Thinking..."
    assert log[2].label == "All done."
    assert [s.seq for s in log] == [1, 2, 3]


@pytest.mark.asyncio
async def test_first_call_sends_system_and_task_with_single_tool(steps, store) -> None:
    gw = _ScriptedGateway([_answer("ok")])
    ctl = _controller(gw, steps, store, model="fast")

    await ctl.run("do it", system_prompt="be brief")

    call = gw.calls[0]
    assert [(m.role, m.content) for m in call["messages"]] == [
        (MessageRole.system, "be brief"),
        (MessageRole.user, "do it"),
    ]
    assert call["tool"]["function"]["name"] == "execute_code"
    assert call["model"] == "groq/llama-3.1-70b-versatile"


@pytest.mark.asyncio
async def test_tool_result_is_fed_back_then_answer(steps, store) -> None:
    gw = _ScriptedGateway([_tool("print(1)"), _answer("The answer is 1.")])
    ctl = _controller(gw, steps, store, cap=_CodeCapability(handler=lambda c: ToolResult(success=True, output="1")))

    res = await ctl.run("compute", thread_id="thread_b")

    assert res.status == RunStatus.completed
    assert res.steps_taken == 2
    assert [(e.code, e.output, e.success) for e in res.code_executions] == [("print(1)", "1", True)]

    second = gw.calls[1]["messages"]
    assert second[-2] == Message(role=MessageRole.assistant, content="Called execute_code")
    assert second[-1].role == MessageRole.user
    assert second[-1].content == "[execute_code result]\n1\n\n" + CONTINUE_INSTRUCTION

    tool_steps = [s for s in await steps.get_steps("thread_b") if s.type == StepType.tool]
    assert len(tool_steps) == 1
    assert tool_steps[0].status == StepStatus.complete
    assert tool_steps[0].label == "Executing code..."
    assert tool_steps[0].tool_name == "execute_code"
    assert tool_steps[0].input == {"code": "print(1)"}


@pytest.mark.asyncio
async def test_assistant_text_is_kept_when_calling_a_tool(steps, store) -> None:
    gw = _ScriptedGateway([_tool("x = 1", text="Let me check."), _answer("done")])
    ctl = _controller(gw, steps, store)

    await ctl.run("task")

    assert gw.calls[1]["messages"][-2] == Message(role=MessageRole.assistant, content="Let me check.")


@pytest.mark.asyncio
async def test_failed_execution_is_reported_as_error_block(steps, store) -> None:
    cap = _CodeCapability(handler=lambda c: ToolResult(success=False, output="partial", error="NameError: x"))
    gw = _ScriptedGateway([_tool("x"), _answer("fixed")])
    ctl = _controller(gw, steps, store, cap=cap)

    res = await ctl.run("task", thread_id="thread_c")

    feedback = gw.calls[1]["messages"][-1].content
    assert feedback.startswith("[execute_code error]\nNameError: x\npartial\n\n")
    assert res.code_executions[0].success is False
    tool_step = [s for s in await steps.get_steps("thread_c") if s.type == StepType.tool][0]
    assert tool_step.status == StepStatus.error


@pytest.mark.asyncio
async def test_capability_exception_is_fed_back_not_raised(steps, store) -> None:
    def _boom(code: str) -> ToolResult:
        raise RuntimeError("sandbox exploded")

    gw = _ScriptedGateway([_tool("x"), _answer("recovered")])
    ctl = _controller(gw, steps, store, cap=_CodeCapability(handler=_boom))

    res = await ctl.run("task")

    assert res.status == RunStatus.completed
    assert gw.calls[1]["messages"][-1].content.startswith("[execute_code error]\nsandbox exploded\n\n")
    assert res.code_executions[0].output == "sandbox exploded"


@pytest.mark.asyncio
async def test_execution_timeout_is_a_failure(steps, store) -> None:
    async def _hang(code: str) -> ToolResult:
        await asyncio.sleep(10)
        return ToolResult(success=True, output="late")

    gw = _ScriptedGateway([_tool("while True: pass"), _answer("gave up")])
    ctl = _controller(gw, steps, store, cap=_CodeCapability(handler=_hang), exec_timeout_ms=50)

    res = await ctl.run("task")

    assert res.status == RunStatus.completed
    assert "execution timed out after 50ms" in gw.calls[1]["messages"][-1].content


@pytest.mark.asyncio
async def test_unknown_tool_gets_feedback_and_no_tool_step(steps, store) -> None:
    gw = _ScriptedGateway(
        [
            GatewayResponse(text="", tool_calls=[ToolCall(tool_name="web_search", args={"q": "x"})]),
            _answer("ok"),
        ]
    )
    ctl = _controller(gw, steps, store)

    res = await ctl.run("task", thread_id="thread_d")

    assert gw.calls[1]["messages"][-1].content == "Unknown tool: web_search\n\n" + CONTINUE_INSTRUCTION
    assert res.code_executions == []
    assert all(s.type != StepType.tool for s in await steps.get_steps("thread_d"))


@pytest.mark.asyncio
async def test_all_tool_calls_of_a_response_run_in_order(steps, store) -> None:
    cap = _CodeCapability()
    gw = _ScriptedGateway(
        [
            GatewayResponse(
                text="",
                tool_calls=[
                    ToolCall(tool_name="execute_code", args={"code": "a"}),
                    ToolCall(tool_name="execute_code", args={"code": "b"}),
                ],
            ),
            _answer("done"),
        ]
    )
    ctl = _controller(gw, steps, store, cap=cap)

    res = await ctl.run("task")

    assert cap.calls == ["a", "b"]
    assert gw.calls[1]["messages"][-1].content == (
        "[execute_code result]\nran a\n\n[execute_code result]\nran b\n\n" + CONTINUE_INSTRUCTION
    )
    assert res.steps_taken == 2


@pytest.mark.asyncio
async def test_step_budget_stops_after_exactly_max_steps(steps, store, checkpoint_repo) -> None:
    cap = _CodeCapability()
    gw = _ScriptedGateway([_tool("step()", text="still working")])
    ctl = _controller(gw, steps, store, cap=cap, max_steps=3)

    res = await ctl.run("loop forever", thread_id="thread_e")

    assert len(gw.calls) == 3
    assert len(cap.calls) == 3
    assert res.status == RunStatus.incomplete
    assert res.stop_reason == StopReason.max_steps
    assert res.steps_taken == 3
    assert res.text == ""
    assert res.checkpoint_id is None
    assert checkpoint_repo.by_id == {}
    thinking = [s for s in await steps.get_steps("thread_e") if s.label.endswith("Thinking...")]
    assert len(thinking) == 3


@pytest.mark.asyncio
async def test_stop_check_ends_run_before_next_thinking_phase(steps, store, checkpoint_repo) -> None:
    cap = _CodeCapability()
    gw = _ScriptedGateway([_tool("step()", text="working")])
    ctl = _controller(gw, steps, store, cap=cap, max_steps=5)
    checks: List[int] = []

    async def _stop_after_first_step() -> bool:
        checks.append(len(gw.calls))
        return len(gw.calls) >= 1

    res = await ctl.run("task", thread_id="thread_s", should_stop=_stop_after_first_step)

    assert checks == [0, 1]
    assert len(gw.calls) == 1
    assert len(cap.calls) == 1
    assert res.status == RunStatus.incomplete
    assert res.stop_reason == StopReason.cancelled
    assert res.steps_taken == 1
    assert res.text == ""
    assert checkpoint_repo.by_id == {}


@pytest.mark.asyncio
async def test_empty_response_is_reprompted_once(steps, store) -> None:
    gw = _ScriptedGateway([_answer(""), _answer("Here you go.")])
    ctl = _controller(gw, steps, store)

    res = await ctl.run("task")

    assert res.status == RunStatus.completed
    assert res.steps_taken == 2
    assert gw.calls[1]["messages"][-1] == Message(role=MessageRole.user, content=EMPTY_RESPONSE_REPROMPT)


@pytest.mark.asyncio
async def test_second_empty_response_stops(steps, store) -> None:
    gw = _ScriptedGateway([_answer("")])
    ctl = _controller(gw, steps, store)

    res = await ctl.run("task")

    assert len(gw.calls) == 2
    assert res.status == RunStatus.incomplete
    assert res.stop_reason == StopReason.empty_response
    assert res.text == ""


@pytest.mark.asyncio
async def test_gateway_error_aborts_and_fails_open_step(steps, store) -> None:
    gw = _ScriptedGateway([GatewayUnavailable("Gateway not configured")])
    ctl = _controller(gw, steps, store)

    with pytest.raises(GatewayUnavailable):
        await ctl.run("task", thread_id="thread_f")

    log = await steps.get_steps("thread_f")
    assert log[-1].label == "Step 1: Thinking..."
    assert log[-1].status == StepStatus.error


async def _hang_forever(code: str) -> ToolResult:
    await asyncio.Event().wait()
    return ToolResult(success=True)


@pytest.mark.asyncio
async def test_timeout_checkpoints_last_committed_conversation(steps, store, checkpoint_repo) -> None:
    gw = _ScriptedGateway([_tool("slow()")])
    ctl = _controller(gw, steps, store, cap=_CodeCapability(handler=_hang_forever))

    res = await ctl.run("long task", thread_id="thread_g", timeout_s=0.1)

    assert res.status == RunStatus.incomplete
    assert res.stop_reason == StopReason.timeout
    assert res.checkpoint_id is not None
    assert res.iteration == 1

    cp = await store.get(res.checkpoint_id)
    assert cp.reason == CheckpointReason.timeout
    assert cp.status == CheckpointStatus.active
    assert cp.iteration == 1
    # The in-flight step's assistant message was never committed.
    assert [m.role for m in cp.message_history] == [MessageRole.system, MessageRole.user]
    assert cp.metadata["pending_action"] == {"tool": "execute_code", "args_preview": "slow()"}
    assert cp.metadata["outcome_unknown"] is True
    assert cp.metadata["task"] == "long task"
    assert cp.next_task.startswith(RESUME_PREFIX + "long task")
    assert "execute_code" in cp.next_task

    tool_steps = [s for s in await steps.get_steps("thread_g") if s.type == StepType.tool]
    assert tool_steps[0].status == StepStatus.error


@pytest.mark.asyncio
async def test_concurrent_timeouts_on_one_thread_get_distinct_iterations(steps, store) -> None:
    a = _controller(_ScriptedGateway([_tool("slow()")]), steps, store, cap=_CodeCapability(handler=_hang_forever))
    b = _controller(_ScriptedGateway([_tool("slow()")]), steps, store, cap=_CodeCapability(handler=_hang_forever))

    r1, r2 = await asyncio.gather(
        a.run("long task", thread_id="thread_c", timeout_s=0.05),
        b.run("long task", thread_id="thread_c", timeout_s=0.05),
    )

    assert sorted([r1.iteration, r2.iteration]) == [1, 2]
    cps = await store.list_for_thread("thread_c")
    assert [cp.iteration for cp in cps] == [2, 1]
    assert [cp.status for cp in cps] == [CheckpointStatus.active, CheckpointStatus.superseded]


@pytest.mark.asyncio
async def test_timeout_between_steps_has_no_pending_action(steps, store) -> None:
    async def _slow_gateway_step(code: str) -> ToolResult:
        return ToolResult(success=True, output="ok")

    class _SlowSecondCall(_ScriptedGateway):
        async def complete(self, messages, **kwargs):
            if self.calls:
                self.calls.append({"messages": list(messages)})
                await asyncio.Event().wait()
            return await super().complete(messages, **kwargs)

    gw = _SlowSecondCall([_tool("first()")])
    ctl = _controller(gw, steps, store, cap=_CodeCapability(handler=_slow_gateway_step))

    res = await ctl.run("task", thread_id="thread_h", timeout_s=0.1)

    cp = await store.get(res.checkpoint_id)
    assert "pending_action" not in cp.metadata
    assert [m.role for m in cp.message_history] == [
        MessageRole.system,
        MessageRole.user,
        MessageRole.assistant,
        MessageRole.user,
    ]
    assert len(res.code_executions) == 1


@pytest.mark.asyncio
async def test_resume_completes_the_checkpoint(steps, store) -> None:
    first = _controller(_ScriptedGateway([_tool("slow()")]), steps, store, cap=_CodeCapability(handler=_hang_forever))
    timed_out = await first.run("long task", thread_id="thread_i", timeout_s=0.1)

    gw = _ScriptedGateway([_answer("finished")])
    ctl = _controller(gw, steps, store)
    res = await ctl.resume(timed_out.checkpoint_id)

    assert res.status == RunStatus.completed
    assert res.thread_id == "thread_i"
    assert res.iteration == 1
    sent = gw.calls[0]["messages"]
    assert sent[-1].role == MessageRole.user
    assert sent[-1].content.startswith(RESUME_PREFIX + "long task")
    cp = await store.get(timed_out.checkpoint_id)
    assert cp.status == CheckpointStatus.completed
    assert cp.restored_at is not None


@pytest.mark.asyncio
async def test_resume_that_times_out_again_supersedes(steps, store) -> None:
    first = _controller(_ScriptedGateway([_tool("slow()")]), steps, store, cap=_CodeCapability(handler=_hang_forever))
    r1 = await first.run("long task", thread_id="thread_j", timeout_s=0.1)

    r2 = await first.resume(r1.checkpoint_id, timeout_s=0.1)

    assert r2.stop_reason == StopReason.timeout
    assert r2.iteration == 2
    assert (await store.get(r1.checkpoint_id)).status == CheckpointStatus.superseded
    cp2 = await store.get(r2.checkpoint_id)
    assert cp2.status == CheckpointStatus.active
    assert cp2.metadata["task"] == "long task"
    assert cp2.metadata["resumed_from"] == r1.checkpoint_id


@pytest.mark.asyncio
async def test_resume_ending_incomplete_fails_the_checkpoint(steps, store) -> None:
    first = _controller(_ScriptedGateway([_tool("slow()")]), steps, store, cap=_CodeCapability(handler=_hang_forever))
    r1 = await first.run("long task", thread_id="thread_k", timeout_s=0.1)

    ctl = _controller(_ScriptedGateway([_tool("again()")]), steps, store, max_steps=1)
    res = await ctl.resume(r1.checkpoint_id)

    assert res.stop_reason == StopReason.max_steps
    cp = await store.get(r1.checkpoint_id)
    assert cp.status == CheckpointStatus.failed
    assert cp.error == "run stopped: max_steps"


@pytest.mark.asyncio
async def test_resume_gateway_error_fails_checkpoint_and_raises(steps, store) -> None:
    first = _controller(_ScriptedGateway([_tool("slow()")]), steps, store, cap=_CodeCapability(handler=_hang_forever))
    r1 = await first.run("long task", thread_id="thread_l", timeout_s=0.1)

    ctl = _controller(_ScriptedGateway([GatewayUnavailable("down")]), steps, store)
    with pytest.raises(GatewayUnavailable):
        await ctl.resume(r1.checkpoint_id)

    cp = await store.get(r1.checkpoint_id)
    assert cp.status == CheckpointStatus.failed
    assert cp.error == "down"

    with pytest.raises(CheckpointAlreadyTerminal):
        await ctl.resume(r1.checkpoint_id)


@pytest.mark.asyncio
async def test_concurrent_resume_of_one_checkpoint_is_refused(steps, store) -> None:
    first = _controller(_ScriptedGateway([_tool("slow()")]), steps, store, cap=_CodeCapability(handler=_hang_forever))
    r1 = await first.run("long task", thread_id="thread_m", timeout_s=0.1)

    gate = asyncio.Event()

    class _GatedGateway(_ScriptedGateway):
        async def complete(self, messages, **kwargs):
            await gate.wait()
            return await super().complete(messages, **kwargs)

    gw = _GatedGateway([_answer("finished")])
    ctl = _controller(gw, steps, store)
    running = asyncio.create_task(ctl.resume(r1.checkpoint_id))
    await asyncio.sleep(0.05)

    with pytest.raises(CheckpointInUse):
        await ctl.resume(r1.checkpoint_id)

    gate.set()
    res = await asyncio.wait_for(running, timeout=2)
    assert res.status == RunStatus.completed
    assert len(gw.calls) == 1
    assert (await store.get(r1.checkpoint_id)).status == CheckpointStatus.completed


@pytest.mark.asyncio
async def test_resume_unknown_checkpoint(steps, store) -> None:
    ctl = _controller(_ScriptedGateway([_answer("x")]), steps, store)
    with pytest.raises(CheckpointNotFound):
        await ctl.resume("ckpt_missing")


def test_truncate_output_keeps_head_and_tail() -> None:
    text = "a" * 60 + "b" * 40
    out = truncate_output(text, 20)
    assert out.startswith("a" * 10)
    assert out.endswith("b" * 10)
    assert "[80 characters truncated]" in out
    assert truncate_output(text, 20) == out


def test_truncate_output_short_text_unchanged() -> None:
    assert truncate_output("short", 100) == "short"
    assert truncate_output("", 5) == ""


@pytest.mark.asyncio
async def test_long_tool_output_is_truncated_for_the_model(steps, store) -> None:
    cap = _CodeCapability(handler=lambda c: ToolResult(success=True, output="x" * 500))
    gw = _ScriptedGateway([_tool("big()"), _answer("ok")])
    ctl = _controller(gw, steps, store, cap=cap, max_tool_output_chars=100)

    res = await ctl.run("task")

    feedback = gw.calls[1]["messages"][-1].content
    assert "[400 characters truncated]" in feedback
    assert res.code_executions[0].output == "x" * 500
