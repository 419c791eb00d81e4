from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from orbia.application.api.dependencies import get_container, get_principal
from orbia.application.api.schema import CreateEventRequest, SendMailRequest
from orbia.application.container import ServiceContainer
from orbia.domain.errors import HTTP_STATUS_BY_CODE, ErrorCode
from orbia.domain.models.tool_result import ToolResult
from orbia.infrastructure.security import Principal

router = APIRouter(prefix="/api", tags=["tools"])

# Wire code the dashboard checks to prompt for linking a Google account
NO_GOOGLE_ACCOUNT = "NO_GOOGLE_ACCOUNT"


def render_tool_result(result: ToolResult, key: str):
    """Success as ``{key: data}``; failures as ``{error, code}`` with a status from the code"""

    if result.success:
        return {key: result.data}

    code = result.code or ErrorCode.INTERNAL_ERROR
    body: Dict[str, Any] = {"error": result.error, "code": code.value}
    if code == ErrorCode.NO_ACCOUNT_LINKED:
        body["code"] = NO_GOOGLE_ACCOUNT
    if result.details is not None:
        body["details"] = result.details
    if result.fields:
        body["fields"] = result.fields
    return JSONResponse(status_code=HTTP_STATUS_BY_CODE.get(code, 500), content=body)


async def _run(container: ServiceContainer, name: str, principal: Principal, arguments: Dict[str, Any]) -> ToolResult:
    return await container.registry.execute(
        name, principal, {k: v for k, v in arguments.items() if v is not None}
    )


@router.get("/calendar")
async def list_calendar_events(
    max_results: int = Query(10, alias="maxResults", ge=1, le=50),
    principal: Principal = Depends(get_principal),
    container: ServiceContainer = Depends(get_container),
):
    result = await _run(container, "list_calendar_events", principal, {"maxResults": max_results})
    return render_tool_result(result, "events")


@router.post("/calendar")
async def create_calendar_event(
    body: CreateEventRequest,
    principal: Principal = Depends(get_principal),
    container: ServiceContainer = Depends(get_container),
):
    result = await _run(container, "create_calendar_event", principal, body.model_dump())
    return render_tool_result(result, "event")


@router.delete("/calendar/{event_id}")
async def delete_calendar_event(
    event_id: str,
    principal: Principal = Depends(get_principal),
    container: ServiceContainer = Depends(get_container),
):
    result = await _run(container, "delete_calendar_event", principal, {"eventId": event_id})
    return render_tool_result(result, "event")


@router.get("/documents")
async def list_documents(
    document_id: Optional[str] = Query(None, alias="documentId"),
    max_results: int = Query(10, alias="maxResults", ge=1, le=50),
    principal: Principal = Depends(get_principal),
    container: ServiceContainer = Depends(get_container),
):
    if document_id:
        result = await _run(container, "get_document_content", principal, {"documentId": document_id})
        return render_tool_result(result, "document")

    result = await _run(container, "list_documents", principal, {"maxResults": max_results})
    return render_tool_result(result, "documents")


@router.get("/documents/{document_id}")
async def get_document(
    document_id: str,
    principal: Principal = Depends(get_principal),
    container: ServiceContainer = Depends(get_container),
):
    result = await _run(container, "get_document_content", principal, {"documentId": document_id})
    return render_tool_result(result, "document")


@router.get("/gmail/recent")
async def recent_gmail_messages(
    max_results: int = Query(10, alias="maxResults", ge=1, le=50),
    query: Optional[str] = Query(None),
    principal: Principal = Depends(get_principal),
    container: ServiceContainer = Depends(get_container),
):
    result = await _run(container, "list_gmail_messages", principal, {"maxResults": max_results, "query": query})
    return render_tool_result(result, "emails")


@router.post("/gmail/send")
async def send_gmail_message(
    body: SendMailRequest,
    principal: Principal = Depends(get_principal),
    container: ServiceContainer = Depends(get_container),
):
    result = await _run(container, "send_gmail_message", principal, body.model_dump())
    return render_tool_result(result, "email")


@router.get("/gmail/{message_id}")
async def read_gmail_message(
    message_id: str,
    principal: Principal = Depends(get_principal),
    container: ServiceContainer = Depends(get_container),
):
    result = await _run(container, "read_gmail_message", principal, {"messageId": message_id})
    return render_tool_result(result, "email")
