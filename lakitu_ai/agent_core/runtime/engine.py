from __future__ import annotations

"""LangGraph runtime for the code-execution loop.

``AgentLoopController`` drives one agent run: it asks the model for the next
move, executes the code the model wrote, feeds the results back and repeats
until the model answers in plain text or a budget runs out.

Execution model
--------------

::

    start -> think -+-> execute -> think ...
                    |
                    +-> finish

- ``think`` is one THINKING phase: one gateway call with the full committed
  conversation and the single tool schema. Every phase emits a ``thinking``
  step (``active`` then ``complete``).
- ``execute`` runs every tool call of the response in order. Each call gets
  a ``tool`` step. Failures and exceptions are fed back to the model as
  error text; they never abort the run.
- The loop stops on a plain-text answer (``final_answer``), a second empty
  response (``empty_response``), after ``max_steps`` THINKING phases
  (``max_steps``) or when the caller's ``should_stop`` check says so
  before a THINKING phase (``cancelled``).

Commit point
------------

The assistant message of a step and the tool feedback are appended to the
conversation together, after every tool result of that step was observed.
When the wall-clock timeout cancels the graph, the checkpoint therefore
holds the last *committed* conversation; a tool call that was still running
is recorded as ``pending_action`` with ``outcome_unknown=True`` and the
continuation tells the model to verify it.

Resume
------

``resume`` restores a checkpoint (collaborators first), rebuilds the
conversation from its snapshot plus a continuation message and re-enters
``think``. The checkpoint is held for the whole resumed run, so a second
concurrent resume of it fails with ``CheckpointInUse``. The resumed
checkpoint is completed, failed or left superseded according to how the
resumed run ends.
"""

import asyncio
import json
import logging
import time
from typing import Any, Dict, Optional

from langgraph.graph import END, StateGraph

from ...core.ids import new_thread_id
from ...core.monitoring import log_agent_completion, log_agent_run, log_error
from ..capabilities.base import CapabilityContext, tool_schema
from ..checkpoints import CheckpointSnapshot
from ..errors import InvalidStepTransition
from ..model_presets import resolve_model
from ..prompts import (
    DEFAULT_SYSTEM_PROMPT,
    EMPTY_RESPONSE_REPROMPT,
    build_resume_task,
    continuation_message,
    tool_error_block,
    tool_result_block,
    unknown_tool_block,
)
from ..schemas.domain import (
    Checkpoint,
    CheckpointReason,
    CheckpointStatus,
    CodeExecution,
    Message,
    MessageRole,
    RunResult,
    RunStatus,
    StepStatus,
    StepType,
    StopReason,
    ToolCall,
    ToolResult,
)
from .models import LoopDeps, LoopOptions, StopCheck, _GraphState, _LoopSession

logger = logging.getLogger(__name__)

START_LABEL = "Starting code execution loop..."
EXECUTE_CODE_LABEL = "Executing code..."


def truncate_output(text: str, limit: int) -> str:
    """
    Shorten ``text`` to ``limit`` characters of content.

    The head and the tail are kept and joined by a marker stating how many
    characters were dropped. Text within the limit is returned unchanged.
    """
    if limit <= 0 or len(text) <= limit:
        return text
    omitted = len(text) - limit
    head = limit - limit // 2
    tail = limit // 2
    marker = f"\n... [{omitted} characters truncated] ...\n"
    return text[:head] + marker + (text[-tail:] if tail else "")


def _args_preview(call: ToolCall, limit: int) -> str:
    code = call.args.get("code")
    if isinstance(code, str):
        return truncate_output(code, limit)
    return truncate_output(json.dumps(call.args, default=str, sort_keys=True), limit)


def _resume_session(cp: Checkpoint, system_prompt: Optional[str]) -> _LoopSession:
    """Rebuild a run from a checkpoint: its snapshot plus a continuation message."""
    messages = list(cp.message_history)
    if not messages or messages[0].role != MessageRole.system:
        messages.insert(0, Message(role=MessageRole.system, content=system_prompt or DEFAULT_SYSTEM_PROMPT))
    elif system_prompt:
        messages[0] = Message(role=MessageRole.system, content=system_prompt)
    messages.append(Message(role=MessageRole.user, content=build_resume_task(cp.next_task)))

    task = cp.metadata.get("task")
    return _LoopSession(
        thread_id=cp.thread_id,
        task=task if isinstance(task, str) and task else cp.next_task,
        messages=messages,
        iteration=cp.iteration,
        session_id=cp.session_id,
        resumed_from=cp.id,
    )


class AgentLoopController:
    """Run the think/execute loop for one thread at a time.

    A controller holds no per-run state between calls; concurrent runs on
    different threads may share one instance.
    """

    def __init__(self, deps: LoopDeps, options: LoopOptions | None = None) -> None:
        """
        Initialize the controller.

        Args:
            deps: Gateway, capability set, step log and checkpoint store.
            options: Model and budget settings. Defaults to ``LoopOptions()``.
        """
        self._deps = deps
        self._options = options or LoopOptions()
        self._model = resolve_model(self._options.model, self._options.model_overrides)
        cap = deps.capabilities.get(self._options.tool_name)
        self._tool = tool_schema(cap) if cap is not None else None
        self._graph = self._build_graph()

    @property
    def options(self) -> LoopOptions:
        return self._options

    @property
    def model(self) -> str:
        return self._model

    def _build_graph(self):
        """Build and compile the LangGraph state machine."""
        g: StateGraph = StateGraph(_GraphState)
        g.add_node("start", self._node_start)
        g.add_node("think", self._node_think)
        g.add_node("execute", self._node_execute)
        g.add_node("finish", self._node_finish)

        g.set_entry_point("start")
        g.add_edge("start", "think")

        g.add_conditional_edges(
            "think",
            self._route_after_think,
            {
                "execute": "execute",
                "think": "think",
                "finish": "finish",
            },
        )
        g.add_conditional_edges(
            "execute",
            self._route_after_execute,
            {
                "think": "think",
                "finish": "finish",
            },
        )
        g.add_edge("finish", END)
        return g.compile()

    def _recursion_limit(self) -> int:
        # start + finish, two nodes per step, one extra think for the empty-response retry.
        return 2 * max(self._options.max_steps, 1) + 10

    async def run(
        self,
        task: str,
        *,
        system_prompt: Optional[str] = None,
        thread_id: Optional[str] = None,
        timeout_s: Optional[float] = None,
        iteration: int = 0,
        session_id: Optional[str] = None,
        should_stop: Optional[StopCheck] = None,
    ) -> RunResult:
        """
        Run the loop for a new task.

        Args:
            task: The user's task.
            system_prompt: Replaces the default system prompt.
            thread_id: Thread to record steps and checkpoints under; generated when omitted.
            timeout_s: Wall-clock budget. On expiry the run is checkpointed.
            iteration: Iteration number reported for this run.
            session_id: Session the thread belongs to, copied onto checkpoints.
            should_stop: Checked before every THINKING phase; when it returns
                True the run ends ``incomplete`` with ``stop_reason=cancelled``.

        Raises:
            GatewayUnavailable: The gateway is not configured or not reachable.
            GatewayRequestFailed: The gateway answered with an error.
        """
        session = _LoopSession(
            thread_id=thread_id or new_thread_id(),
            task=task,
            messages=[
                Message(role=MessageRole.system, content=system_prompt or DEFAULT_SYSTEM_PROMPT),
                Message(role=MessageRole.user, content=task),
            ],
            iteration=iteration,
            session_id=session_id,
            should_stop=should_stop,
        )
        return await self._drive(session, timeout_s=timeout_s, start_label=START_LABEL)

    async def resume(
        self,
        checkpoint_id: str,
        *,
        system_prompt: Optional[str] = None,
        timeout_s: Optional[float] = None,
    ) -> RunResult:
        """
        Continue a thread from a checkpoint.

        Raises:
            CheckpointNotFound: No checkpoint has this id.
            CheckpointAlreadyTerminal: The checkpoint is completed or failed.
            CheckpointInUse: The checkpoint is already being resumed in this process.
            GatewayUnavailable: The gateway is not configured or not reachable.
            GatewayRequestFailed: The gateway answered with an error.
        """
        store = self._deps.checkpoints
        async with store.resuming(checkpoint_id) as cp:
            session = _resume_session(cp, system_prompt)
            try:
                result = await self._drive(
                    session,
                    timeout_s=timeout_s,
                    start_label=f"Resuming from checkpoint (iteration {cp.iteration})...",
                )
            except Exception as e:
                await store.complete(cp.id, CheckpointStatus.failed, error=str(e) or type(e).__name__)
                raise

            if result.status == RunStatus.completed:
                await store.complete(cp.id, CheckpointStatus.completed)
            elif result.checkpoint_id is None:
                reason = result.stop_reason.value if result.stop_reason else "unknown"
                await store.complete(cp.id, CheckpointStatus.failed, error=f"run stopped: {reason}")
        return result

    async def _drive(self, session: _LoopSession, *, timeout_s: Optional[float], start_label: str) -> RunResult:
        started = time.perf_counter()
        log_agent_run(session.thread_id, session.task, self._model, session.iteration)
        logger.info(
            "loop start thread=%s model=%s max_steps=%d timeout_s=%s resumed_from=%s",
            session.thread_id,
            self._model,
            self._options.max_steps,
            timeout_s,
            session.resumed_from,
        )

        state: _GraphState = {"session": session, "_start_label": start_label}
        invocation = self._graph.ainvoke(state, config={"recursion_limit": self._recursion_limit()})
        try:
            if timeout_s is None:
                await invocation
            else:
                await asyncio.wait_for(invocation, timeout=timeout_s)
        except asyncio.TimeoutError:
            return await self._checkpoint_on_timeout(session, started)
        except Exception as e:
            await self._close_open_steps(session)
            log_error(type(e).__name__, str(e), {"thread_id": session.thread_id})
            logger.warning("loop aborted thread=%s: %s", session.thread_id, e)
            raise

        stop = session.stop_reason or StopReason.max_steps
        completed = stop == StopReason.final_answer
        result = RunResult(
            status=RunStatus.completed if completed else RunStatus.incomplete,
            thread_id=session.thread_id,
            text=session.final_text,
            code_executions=list(session.code_executions),
            stop_reason=stop,
            steps_taken=session.step,
            iteration=session.iteration,
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )
        self._log_completion(result)
        return result

    async def _checkpoint_on_timeout(self, session: _LoopSession, started: float) -> RunResult:
        await self._close_open_steps(session)

        pending = session.in_flight
        if pending is None and session.pending_response is not None:
            pending = session.pending_response.tool_call

        elapsed_ms = (time.perf_counter() - started) * 1000.0
        metadata: Dict[str, Any] = {
            "task": session.task,
            "steps_taken": session.step,
            "code_executions": len(session.code_executions),
            "elapsed_ms": round(elapsed_ms, 1),
        }
        if pending is not None:
            metadata["pending_action"] = {
                "tool": pending.tool_name,
                "args_preview": _args_preview(pending, self._options.output_preview_chars),
            }
            metadata["outcome_unknown"] = True
        if session.resumed_from:
            metadata["resumed_from"] = session.resumed_from

        checkpoint = await self._deps.checkpoints.create(
            session.thread_id,
            next_task=build_resume_task(session.task, pending.tool_name if pending else None),
            reason=CheckpointReason.timeout,
            snapshot=CheckpointSnapshot(
                messages=list(session.messages),
                metadata=metadata,
                session_id=session.session_id,
            ),
        )
        logger.info(
            "loop timed out thread=%s after %d steps; checkpoint %s (iteration %d)",
            session.thread_id,
            session.step,
            checkpoint.id,
            checkpoint.iteration,
        )
        result = RunResult(
            status=RunStatus.incomplete,
            thread_id=session.thread_id,
            text=session.final_text,
            code_executions=list(session.code_executions),
            stop_reason=StopReason.timeout,
            steps_taken=session.step,
            iteration=checkpoint.iteration,
            checkpoint_id=checkpoint.id,
            duration_ms=elapsed_ms,
        )
        self._log_completion(result)
        return result

    def _log_completion(self, result: RunResult) -> None:
        logger.info(
            "loop end thread=%s status=%s stop=%s steps=%d executions=%d",
            result.thread_id,
            result.status.value,
            result.stop_reason.value if result.stop_reason else None,
            result.steps_taken,
            len(result.code_executions),
            extra={"thread_id": result.thread_id, "checkpoint_id": result.checkpoint_id},
        )
        log_agent_completion(
            result.thread_id,
            result.status.value,
            result.stop_reason.value if result.stop_reason else "",
            result.steps_taken,
            result.duration_ms,
        )

    async def _close_open_steps(self, session: _LoopSession) -> None:
        for step_id in list(session.open_steps):
            try:
                await self._deps.steps.update_step_status(session.thread_id, step_id, StepStatus.error)
            except InvalidStepTransition:
                logger.debug("step %s already finished", step_id)
        session.open_steps.clear()

    async def _finish_step(self, session: _LoopSession, step_id: str, status: StepStatus) -> None:
        await self._deps.steps.update_step_status(session.thread_id, step_id, status)
        if step_id in session.open_steps:
            session.open_steps.remove(step_id)

    async def _node_start(self, state: _GraphState) -> _GraphState:
        session = state["session"]
        await self._deps.steps.emit_step(
            session.thread_id,
            type=StepType.thinking,
            status=StepStatus.complete,
            label=state.get("_start_label") or START_LABEL,
        )
        return state

    async def _node_think(self, state: _GraphState) -> _GraphState:
        session = state["session"]
        opts = self._options
        if session.should_stop is not None and await session.should_stop():
            logger.info("thread %s stopped by its owner after %d steps", session.thread_id, session.step)
            session.stop_reason = StopReason.cancelled
            state["_route"] = "finish"
            return state
        session.step += 1

        step_id = await self._deps.steps.emit_step(
            session.thread_id,
            type=StepType.thinking,
            status=StepStatus.active,
            label=f"Step {session.step}: Thinking...",
        )
        session.open_steps.append(step_id)

        response = await self._deps.gateway.complete(
            session.messages,
            tool=self._tool,
            model=self._model,
            max_tokens=opts.max_tokens,
            temperature=opts.temperature,
        )
        await self._finish_step(session, step_id, StepStatus.complete)

        text = response.text or ""
        if response.tool_calls:
            session.pending_response = response
            state["_route"] = "execute"
            return state

        if text.strip():
            session.final_text = text
            session.stop_reason = StopReason.final_answer
            await self._deps.steps.emit_step(
                session.thread_id,
                type=StepType.text,
                status=StepStatus.complete,
                label=text[: opts.label_chars],
            )
            state["_route"] = "finish"
            return state

        if session.retried_empty:
            session.stop_reason = StopReason.empty_response
            state["_route"] = "finish"
        elif session.step >= opts.max_steps:
            session.stop_reason = StopReason.max_steps
            state["_route"] = "finish"
        else:
            logger.info("empty model response on thread %s; re-prompting once", session.thread_id)
            session.retried_empty = True
            session.messages.append(Message(role=MessageRole.user, content=EMPTY_RESPONSE_REPROMPT))
            state["_route"] = "think"
        return state

    async def _node_execute(self, state: _GraphState) -> _GraphState:
        session = state["session"]
        response = session.pending_response
        if response is None:
            state["_route"] = "think"
            return state

        results: list[str] = []
        for call in response.tool_calls:
            results.append(await self._execute_call(session, call))

        session.messages.append(
            Message(
                role=MessageRole.assistant,
                content=response.text or f"Called {response.tool_calls[0].tool_name}",
            )
        )
        session.messages.append(Message(role=MessageRole.user, content=continuation_message(results)))
        session.pending_response = None

        if session.step >= self._options.max_steps:
            session.stop_reason = StopReason.max_steps
            state["_route"] = "finish"
        else:
            state["_route"] = "think"
        return state

    async def _execute_call(self, session: _LoopSession, call: ToolCall) -> str:
        """Execute one tool call and return the feedback block for the model."""
        opts = self._options
        cap = self._deps.capabilities.get(call.tool_name)
        if cap is None:
            logger.warning("thread %s: model called unknown tool %r", session.thread_id, call.tool_name)
            return unknown_tool_block(call.tool_name)

        label = EXECUTE_CODE_LABEL if call.tool_name == opts.tool_name else f"Calling {call.tool_name}..."
        step_id = await self._deps.steps.emit_step(
            session.thread_id,
            type=StepType.tool,
            status=StepStatus.active,
            label=label,
            tool_name=call.tool_name,
            input={"code": _args_preview(call, opts.output_preview_chars)},
        )
        session.open_steps.append(step_id)
        session.in_flight = call

        ctx = CapabilityContext(thread_id=session.thread_id, timeout_ms=opts.exec_timeout_ms)
        try:
            result = await asyncio.wait_for(cap.execute(ctx, args=call.args), timeout=opts.exec_timeout_ms / 1000)
        except asyncio.TimeoutError:
            result = ToolResult(success=False, error=f"execution timed out after {opts.exec_timeout_ms}ms")
        except Exception as e:
            logger.warning("thread %s: %s raised %s: %s", session.thread_id, call.tool_name, type(e).__name__, e)
            result = ToolResult(success=False, error=str(e) or type(e).__name__)
        session.in_flight = None

        output = truncate_output(result.output or "", opts.max_tool_output_chars)
        code = call.args.get("code")
        session.code_executions.append(
            CodeExecution(
                code=code if isinstance(code, str) else json.dumps(call.args, default=str),
                output=result.output or ("" if result.success else result.error or ""),
                success=result.success,
            )
        )

        if result.success:
            await self._finish_step(session, step_id, StepStatus.complete)
            return tool_result_block(output)
        await self._finish_step(session, step_id, StepStatus.error)
        return tool_error_block(result.error or "execution failed", output)

    async def _node_finish(self, state: _GraphState) -> _GraphState:
        session = state["session"]
        if session.stop_reason is None:
            session.stop_reason = StopReason.max_steps
        return state

    def _route_after_think(self, state: _GraphState) -> str:
        return state.get("_route") or "finish"

    def _route_after_execute(self, state: _GraphState) -> str:
        return state.get("_route") or "finish"
