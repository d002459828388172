"""
Monitoring and Tracing Configuration Module.

This module provides integration with Pydantic Logfire for monitoring and
tracing of the agent backend, including:
- Agent run lifecycle (start, completion, checkpointing)
- LLM gateway calls
- Subagent status transitions
- API endpoint tracing

Every ``log_*`` helper is best-effort: a telemetry failure is logged at debug
level and never interrupts the caller.
"""

import logging
import os
from typing import Optional

import logfire
from fastapi import FastAPI

logger = logging.getLogger(__name__)

# Logfire configuration from environment
LOGFIRE_ENABLED = os.getenv("LOGFIRE_ENABLED", "false").lower() in ("true", "1", "yes")
LOGFIRE_TOKEN = os.getenv("LOGFIRE_TOKEN", "")
LOGFIRE_PROJECT_NAME = os.getenv("LOGFIRE_PROJECT_NAME", "lakitu-ai")
LOGFIRE_ENVIRONMENT = os.getenv("LOGFIRE_ENVIRONMENT", "development")
LOGFIRE_SERVICE_NAME = os.getenv("LOGFIRE_SERVICE_NAME", "lakitu-ai-server")
LOGFIRE_SERVICE_VERSION = os.getenv("LOGFIRE_SERVICE_VERSION", "0.0.0")

# Feature flags
LOGFIRE_TRACE_SQLALCHEMY = os.getenv("LOGFIRE_TRACE_SQLALCHEMY", "true").lower() in ("true", "1", "yes")
LOGFIRE_TRACE_HTTPX = os.getenv("LOGFIRE_TRACE_HTTPX", "true").lower() in ("true", "1", "yes")
LOGFIRE_TRACE_FASTAPI = os.getenv("LOGFIRE_TRACE_FASTAPI", "true").lower() in ("true", "1", "yes")


def initialize_logfire(app: FastAPI | None = None) -> bool:
    """
    Initialize Logfire for monitoring and tracing.

    This function sets up Logfire with automatic instrumentation for:
    - SQLAlchemy database operations
    - HTTPX HTTP requests (gateway and executor calls)
    - FastAPI endpoints

    Args:
        app: FastAPI application instance for FastAPI instrumentation (optional).

    Returns:
        True when Logfire was configured, False when it is disabled or failed.
    """
    if not LOGFIRE_ENABLED:
        logger.info("Logfire monitoring is disabled. Set LOGFIRE_ENABLED=true to enable.")
        return False

    if not LOGFIRE_TOKEN:
        logger.warning(
            "Logfire is enabled but LOGFIRE_TOKEN is not set. "
            "Monitoring will not work. Set LOGFIRE_TOKEN to enable Logfire."
        )
        return False

    try:
        logfire.configure(
            token=LOGFIRE_TOKEN,
            service_name=LOGFIRE_SERVICE_NAME,
            service_version=LOGFIRE_SERVICE_VERSION,
            environment=LOGFIRE_ENVIRONMENT,
        )
    except Exception as e:
        logger.error(f"Failed to initialize Logfire: {e}", exc_info=True)
        return False

    if LOGFIRE_TRACE_SQLALCHEMY:
        try:
            logfire.instrument_sqlalchemy()
            logger.info("Logfire: SQLAlchemy instrumentation enabled")
        except Exception as e:
            logger.warning(f"Failed to instrument SQLAlchemy: {e}")

    if LOGFIRE_TRACE_HTTPX:
        try:
            logfire.instrument_httpx()
            logger.info("Logfire: HTTPX instrumentation enabled")
        except Exception as e:
            logger.warning(f"Failed to instrument HTTPX: {e}")

    if LOGFIRE_TRACE_FASTAPI and app is not None:
        try:
            logfire.instrument_fastapi(app=app)
            logger.info("Logfire: FastAPI instrumentation enabled")
        except Exception as e:
            logger.warning(f"Failed to instrument FastAPI: {e}")

    logger.info(
        f"Logfire monitoring initialized: "
        f"project={LOGFIRE_PROJECT_NAME}, "
        f"environment={LOGFIRE_ENVIRONMENT}, "
        f"service={LOGFIRE_SERVICE_NAME}"
    )
    return True


def log_agent_run(thread_id: str, task: str, model: str, iteration: int = 0) -> None:
    """
    Log the start (or resumption) of an agent run.

    Args:
        thread_id: The thread the run belongs to
        task: The user task driving the run
        model: The model identifier used for the run
        iteration: Checkpoint iteration the run continues from (0 for fresh runs)
    """
    try:
        logfire.info("Agent run started", thread_id=thread_id, task=task[:500], model=model, iteration=iteration)
    except Exception:
        logger.debug(f"Could not log agent run to Logfire: thread_id={thread_id}")


def log_agent_completion(thread_id: str, status: str, stop_reason: str, steps: int, duration_ms: float) -> None:
    """
    Log the end of an agent run.

    Args:
        thread_id: The thread identifier
        status: ``completed`` or ``incomplete``
        stop_reason: Why the loop stopped (final_answer, max_steps, empty_response, timeout, cancelled)
        steps: Number of THINKING phases taken
        duration_ms: The duration of the run in milliseconds
    """
    try:
        logfire.info(
            "Agent run finished",
            thread_id=thread_id,
            status=status,
            stop_reason=stop_reason,
            steps=steps,
            duration_ms=duration_ms,
        )
    except Exception:
        logger.debug(f"Could not log agent completion to Logfire: thread_id={thread_id}")


def log_llm_call(model: str, duration_ms: float, tool_called: bool, tokens_used: Optional[int] = None) -> None:
    """
    Log an LLM gateway call.

    Args:
        model: The model name
        duration_ms: Round-trip latency of the call
        tool_called: Whether the response carried a tool call
        tokens_used: Total tokens reported by the provider, when present
    """
    try:
        logfire.info(
            "LLM call completed",
            model=model,
            duration_ms=duration_ms,
            tool_called=tool_called,
            tokens_used=tokens_used,
        )
    except Exception:
        logger.debug(f"Could not log LLM call to Logfire: model={model}")


def log_checkpoint_created(thread_id: str, checkpoint_id: str, iteration: int, reason: str) -> None:
    """Log that a checkpoint has been written for a thread."""
    try:
        logfire.info(
            "Checkpoint created",
            thread_id=thread_id,
            checkpoint_id=checkpoint_id,
            iteration=iteration,
            reason=reason,
        )
    except Exception:
        logger.debug(f"Could not log checkpoint to Logfire: checkpoint_id={checkpoint_id}")


def log_subagent_transition(subagent_id: str, status: str, error: Optional[str] = None) -> None:
    """Log a subagent lifecycle transition."""
    try:
        logfire.info("Subagent status changed", subagent_id=subagent_id, status=status, error=error)
    except Exception:
        logger.debug(f"Could not log subagent transition to Logfire: subagent_id={subagent_id}")


def log_api_request(method: str, path: str, status_code: int, duration_ms: float) -> None:
    """
    Log an API request with performance metrics.

    Args:
        method: HTTP method
        path: Request path
        status_code: HTTP status code
        duration_ms: Request duration in milliseconds
    """
    try:
        logfire.info(
            "API request completed",
            method=method,
            path=path,
            status_code=status_code,
            duration_ms=duration_ms,
        )
    except Exception:
        logger.debug(f"Could not log API request to Logfire: {method} {path}")


def log_error(error_type: str, error_message: str, context: Optional[dict] = None) -> None:
    """
    Log an error with context for debugging.

    Args:
        error_type: Type of error
        error_message: Error message
        context: Additional context dictionary
    """
    try:
        logfire.error(f"{error_type}: {error_message}", **(context or {}))
    except Exception:
        logger.debug(f"Could not log error to Logfire: {error_type}")
