from typing import Optional

from fastapi import APIRouter, Depends, Query
import structlog

from orbia.application.api.dependencies import get_container, require_user_id
from orbia.application.api.schema import AddMemoryRequest, SearchMemoryRequest, UpdateMemoryRequest
from orbia.application.container import ServiceContainer
from orbia.domain.errors import InvalidRequestError
from orbia.domain.messages.adapter import normalize, to_memory_format

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api", tags=["memory"])


@router.post("/memory/add", status_code=201)
async def add_memory(body: AddMemoryRequest, container: ServiceContainer = Depends(get_container)):
    messages = to_memory_format(normalize(body.messages))
    if not messages:
        raise InvalidRequestError(
            "Valid messages array is required in the request body",
            fields={"messages": "required"}
        )
    user_id = require_user_id(body.user_id)

    records = await container.memory.add(messages, user_id, metadata=body.metadata)
    return {
        "success": True,
        "memoryId": records[0].id if records else None,
        "userId": user_id,
        "data": {"results": [r.to_wire() for r in records]},
    }


@router.get("/memory/memories")
async def list_memories(
    user_id: Optional[str] = Query(None, alias="userId"),
    limit: int = Query(50, ge=1, le=500),
    page: int = Query(1, ge=1),
    container: ServiceContainer = Depends(get_container),
):
    user_id = require_user_id(user_id)
    records = await container.memory.list(user_id, limit=limit, page=page)
    return {
        "userId": user_id,
        "count": len(records),
        "page": page,
        "limit": limit,
        "data": [r.to_wire() for r in records],
    }


async def _search(container: ServiceContainer, request: SearchMemoryRequest):
    if not request.query or not request.query.strip():
        raise InvalidRequestError("Search query is required", fields={"query": "required"})
    user_id = require_user_id(request.user_id)

    hits = await container.memory.search(request.query, user_id, limit=request.limit, threshold=request.threshold)
    return {
        "query": request.query,
        "userId": user_id,
        "threshold": request.threshold,
        "count": len(hits),
        "data": [h.to_wire() for h in hits],
    }


@router.get("/memory/search")
async def search_memories(
    query: Optional[str] = Query(None),
    user_id: Optional[str] = Query(None, alias="userId"),
    limit: int = Query(10, ge=1, le=100),
    threshold: Optional[float] = Query(None, ge=0.0, le=1.0),
    container: ServiceContainer = Depends(get_container),
):
    return await _search(
        container, SearchMemoryRequest(query=query, user_id=user_id, limit=limit, threshold=threshold)
    )


@router.post("/memory/search")
async def search_memories_post(body: SearchMemoryRequest, container: ServiceContainer = Depends(get_container)):
    return await _search(container, body)


@router.get("/memory/memory/{memory_id}")
async def get_memory(
    memory_id: str,
    user_id: Optional[str] = Query(None, alias="userId"),
    container: ServiceContainer = Depends(get_container),
):
    record = await container.memory.get(memory_id, require_user_id(user_id))
    return {"success": True, "data": record.to_wire()}


@router.put("/memory/memory/{memory_id}")
async def update_memory(
    memory_id: str,
    body: UpdateMemoryRequest,
    user_id: Optional[str] = Query(None, alias="userId"),
    container: ServiceContainer = Depends(get_container),
):
    if body.data is None:
        raise InvalidRequestError("data is required in the request body", fields={"data": "required"})
    record = await container.memory.update(memory_id, body.data, require_user_id(user_id or body.user_id))
    return {"success": True, "message": "Memory updated successfully", "data": record.to_wire()}


@router.delete("/memory/memory/{memory_id}")
async def delete_memory(
    memory_id: str,
    user_id: Optional[str] = Query(None, alias="userId"),
    container: ServiceContainer = Depends(get_container),
):
    await container.memory.delete(memory_id, require_user_id(user_id))
    return {"success": True, "message": "Memory deleted successfully", "data": {"memoryId": memory_id}}


@router.get("/memory/memory/{memory_id}/history")
async def memory_history(
    memory_id: str,
    user_id: Optional[str] = Query(None, alias="userId"),
    container: ServiceContainer = Depends(get_container),
):
    entries = await container.memory.history(memory_id, require_user_id(user_id))
    return {"success": True, "data": [e.to_wire() for e in entries]}


@router.delete("/memory/user-memories/{user_id}")
async def delete_user_memories(user_id: str, container: ServiceContainer = Depends(get_container)):
    deleted = await container.memory.delete_all(require_user_id(user_id))
    return {
        "success": True,
        "message": f"All memories deleted for user: {user_id}",
        "userId": user_id,
        "data": {"deleted": deleted},
    }


@router.post("/memory/reconcile/{user_id}")
async def reconcile_memory_graph(user_id: str, container: ServiceContainer = Depends(get_container)):
    relinked = await container.memory.reconcile(require_user_id(user_id))
    return {"success": True, "userId": user_id, "relinked": relinked}


@router.get("/memory-graph/{user_id}")
async def memory_graph(user_id: str, container: ServiceContainer = Depends(get_container)):
    graph = await container.memory.get_graph(require_user_id(user_id))
    return graph.to_wire()
