from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
import structlog

from orbia.application.api.dependencies import (
    ANONYMOUS_COOKIE, get_container, get_optional_principal, resolve_agent_principal
)
from orbia.application.api.schema import AgentRequest
from orbia.application.container import ServiceContainer
from orbia.domain.errors import ThreadNotFoundError
from orbia.infrastructure.security import Principal

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api", tags=["agent"])


async def _continue_stream(first: Optional[str], fragments: AsyncIterator[str]) -> AsyncIterator[str]:
    try:
        if first is not None:
            yield first
        async for fragment in fragments:
            yield fragment
    finally:
        await fragments.aclose()


# Streaming or one-shot agent invocation
@router.post("/agent")
async def invoke_agent(
    body: AgentRequest,
    request: Request,
    principal: Optional[Principal] = Depends(get_optional_principal),
    container: ServiceContainer = Depends(get_container),
):
    caller = resolve_agent_principal(principal, body.user_id, request.cookies.get(ANONYMOUS_COOKIE))
    executor = container.executor

    if body.stream and not body.voice:
        fragments = executor.stream(body.messages, caller)
        # Failures before the first fragment still get a JSON error body
        try:
            first = await fragments.__anext__()
        except StopAsyncIteration:
            first = None
        return StreamingResponse(
            _continue_stream(first, fragments),
            media_type="text/plain; charset=utf-8",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}
        )

    response = await executor.invoke(body.messages, caller, voice=body.voice)
    return response.to_wire()


@router.get("/thread/{thread_id}")
async def get_thread(
    thread_id: str,
    principal: Optional[Principal] = Depends(get_optional_principal),
    container: ServiceContainer = Depends(get_container),
):
    thread_manager = container.thread_manager

    thread = await thread_manager.get_thread(thread_id)
    if thread is None or (principal is not None and principal.user_id != thread.user_id):
        raise ThreadNotFoundError("Thread not found")

    checkpoint = await thread_manager.load_checkpoint(thread_id)
    if checkpoint is None:
        raise ThreadNotFoundError("No checkpoint found for this thread")

    messages = checkpoint.messages
    return {
        "threadId": thread_id,
        "messageCount": len(messages),
        "messages": [m.to_wire() for m in messages],
    }
