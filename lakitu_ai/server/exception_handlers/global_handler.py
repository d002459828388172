"""
Exception Handlers for FastAPI Application.

This module maps agent-core errors to HTTP responses and provides a global
handler that catches all other unhandled exceptions, logging the error ID,
request context and full traceback for debugging purposes.
"""

import traceback

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from lakitu_ai.agent_core.errors import (
    CheckpointAlreadyTerminal,
    CheckpointInUse,
    CheckpointNotFound,
    ExecutorUnavailable,
    GatewayRequestFailed,
    GatewayUnavailable,
    InvalidStepTransition,
    LakituError,
    SubagentNotFound,
    UnknownCapability,
)
from lakitu_ai.core.logging_config import get_logger
from lakitu_ai.core.monitoring import log_error

logger = get_logger(__name__)

_STATUS_BY_ERROR: list[tuple[type[LakituError], int]] = [
    (CheckpointNotFound, 404),
    (SubagentNotFound, 404),
    (CheckpointAlreadyTerminal, 409),
    (CheckpointInUse, 409),
    (InvalidStepTransition, 409),
    (UnknownCapability, 400),
    (GatewayUnavailable, 503),
    (ExecutorUnavailable, 503),
    (GatewayRequestFailed, 502),
]


def status_for(exc: LakituError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 500


async def domain_exception_handler(request: Request, exc: LakituError) -> JSONResponse:
    """
    Translate an agent-core error into a JSON error response.

    Args:
        request: The HTTP request that caused the exception
        exc: The agent-core error

    Returns:
        JSONResponse with the mapped status code and the error description
    """
    status_code = status_for(exc)
    logger.warning(
        f"{type(exc).__name__} in {request.method} {request.url.path}: {exc}",
        extra={
            "method": request.method,
            "path": request.url.path,
            "status_code": status_code,
            "error_type": type(exc).__name__,
        },
    )
    log_error(type(exc).__name__, str(exc), {"path": request.url.path, "status_code": status_code})

    content = {"detail": str(exc), "error_type": type(exc).__name__}
    if isinstance(exc, GatewayRequestFailed) and exc.status_code is not None:
        content["upstream_status"] = exc.status_code
    return JSONResponse(status_code=status_code, content=content)


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler to log detailed error information.

    This handler is called for any unhandled exception in the application.
    It logs the full error context and returns a JSON response with an error ID
    that clients can use to reference the error when reporting issues.

    Args:
        request: The HTTP request that caused the exception
        exc: The exception that was raised

    Returns:
        JSONResponse with error details and error ID
    """
    error_id = id(exc)

    logger.error(
        f"Unhandled exception [{error_id}] in {request.method} {request.url.path}: {str(exc)}",
        exc_info=True,
        extra={
            "error_id": error_id,
            "method": request.method,
            "path": request.url.path,
            "query_params": dict(request.query_params),
            "client": request.client.host if request.client else "unknown",
            "error_type": type(exc).__name__,
            "traceback": traceback.format_exc(),
        },
    )

    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "error_id": error_id,
            "error_type": type(exc).__name__,
        },
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """
    Register exception handlers with the FastAPI application.

    Args:
        app: The FastAPI application instance
    """
    app.add_exception_handler(LakituError, domain_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)
    logger.debug("Exception handlers registered successfully")
