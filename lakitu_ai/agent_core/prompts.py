"""Prompt text used by the agent loop and the subagent supervisor."""

from __future__ import annotations

DEFAULT_SYSTEM_PROMPT = """You are an autonomous agent working inside a sandboxed workspace.

You act by calling the `execute_code` tool with code that uses the capability
modules available in the sandbox. Each call returns the program output, or the
error it raised, so you can inspect results and correct mistakes.

Rules:
- Work in small, verifiable steps and check the output of every call.
- When a call fails, read the error and fix the code instead of repeating it.
- When the task is complete, reply with your final answer and do not call `execute_code`."""

CONTINUE_INSTRUCTION = "Continue with the task. When complete, respond without calling execute_code."

EMPTY_RESPONSE_REPROMPT = (
    "Your last reply was empty. Either call execute_code to make progress, "
    "or reply with your final answer as plain text."
)

RESUME_PREFIX = "Continue from where we left off: "

PENDING_ACTION_NOTICE = (
    "The previous session was interrupted while a `{tool}` call was still running. "
    "Its outcome is unknown: verify whether it took effect and redo it if it did not."
)

SUBAGENT_SYSTEM_PROMPT = """You are {name}, a specialized subagent.

Your task: {task}

Guidelines:
- Focus only on the assigned task
- Be concise and efficient
- Report results clearly
- If blocked, explain why"""


def tool_result_block(output: str) -> str:
    return f"[execute_code result]\n{output}"


def tool_error_block(error: str, output: str = "") -> str:
    if output:
        return f"[execute_code error]\n{error}\n{output}"
    return f"[execute_code error]\n{error}"


def unknown_tool_block(tool_name: str) -> str:
    return f"Unknown tool: {tool_name}"


def continuation_message(results: list[str]) -> str:
    """User-role message that feeds tool results back to the model."""
    return "\n\n".join(results) + "\n\n" + CONTINUE_INSTRUCTION


def build_resume_task(next_task: str, pending_tool: str | None = None) -> str:
    """Continuation instruction synthesized from a checkpoint's ``next_task``."""
    text = next_task if next_task.startswith(RESUME_PREFIX) else RESUME_PREFIX + next_task
    if pending_tool:
        text = text + "\n\n" + PENDING_ACTION_NOTICE.format(tool=pending_tool)
    return text


def build_subagent_prompt(name: str, task: str) -> str:
    return SUBAGENT_SYSTEM_PROMPT.format(name=name, task=task)
