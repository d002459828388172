"""
Thread Step Log API Endpoints.

Read a thread's chain-of-thought steps, or follow them live through a
Server-Sent Events (SSE) stream.
"""

import json
from typing import List, Optional, Union

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel
from sse_starlette.sse import EventSourceResponse

from lakitu_ai.agent_core.schemas.domain import ChainOfThoughtStep
from lakitu_ai.core.logging_config import get_logger
from lakitu_ai.server.schemas import ErrorEvent, KeepAliveEvent, StepEvent
from lakitu_ai.server.services.deps import OrchestratorDep

logger = get_logger(__name__)
router = APIRouter()


def serialize_event(event: Union[StepEvent, KeepAliveEvent, ErrorEvent, BaseModel, dict]) -> str:
    """
    Serialize a stream event to a JSON string.

    Args:
        event: Pydantic model or plain dict.

    Returns:
        JSON string representation of the event
    """
    try:
        if isinstance(event, BaseModel):
            return event.model_dump_json()
        return json.dumps(event)
    except Exception as e:
        logger.error(f"Failed to serialize event: {e}", exc_info=True)
        return ErrorEvent(error="Failed to serialize event", details=str(e)).model_dump_json()


@router.get(
    "/{thread_id}/steps",
    response_model=List[ChainOfThoughtStep],
    summary="List Thread Steps",
    description="The thread's chain-of-thought steps ordered by sequence number.",
)
async def list_steps(
    thread_id: str,
    orchestrator: OrchestratorDep,
    after_seq: Optional[int] = Query(None, description="Only steps with a greater sequence number."),
):
    return await orchestrator.get_steps(thread_id, after_seq=after_seq)


@router.get(
    "/{thread_id}/steps/stream",
    summary="Stream Thread Steps",
    description="Subscribe to a Server-Sent Events (SSE) stream of the thread's steps.",
    response_description="A stream of step events.",
    responses={
        200: {
            "description": "SSE stream established",
            "content": {"text/event-stream": {"example": 'data: {"comment": "keep-alive"}\n\n'}},
        }
    },
)
async def stream_steps(thread_id: str, request: Request, orchestrator: OrchestratorDep):
    """
    Stream a thread's steps via Server-Sent Events (SSE).

    Every new step is sent once, and again each time its status changes.
    Idle periods produce keep-alive events.
    """
    logger.info(f"Starting step stream for thread: {thread_id}")

    async def event_generator():
        try:
            async for event in orchestrator.stream_steps(thread_id):
                if await request.is_disconnected():
                    logger.info(f"Client disconnected from step stream for thread: {thread_id}")
                    break
                yield serialize_event(event)
        except Exception as e:
            logger.error(f"Error in step stream for thread {thread_id}: {e}", exc_info=True)
            yield serialize_event({"error": str(e)})

    return EventSourceResponse(event_generator())
