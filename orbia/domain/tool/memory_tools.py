from typing import Any, Dict

from orbia.domain.context.memory.memory_service import MemoryService
from orbia.infrastructure.security.session import Principal
from .base import LocalTool


class MemoryTool(LocalTool):
    """Memory operation scoped to the invoking principal's user id"""

    category = "memory"
    requires_authentication = False

    def __init__(self, memory: MemoryService):
        self.memory = memory


class SearchMemoriesTool(MemoryTool):
    name = "search_memories"
    description = "Search what you remember about the user. Use before answering questions about their preferences or past."
    parameters_schema = {
        "type": "object",
        "properties": {
            "query": {"type": "string", "description": "What to look for"},
            "limit": {"type": "integer", "minimum": 1, "maximum": 20},
        },
        "required": ["query"],
    }

    async def run(self, principal: Principal, arguments: Dict[str, Any]) -> Any:
        hits = await self.memory.search(arguments["query"], principal.user_id, limit=arguments.get("limit") or 5)
        return [hit.to_wire() for hit in hits]


class AddMemoryTool(MemoryTool):
    name = "add_memory"
    description = "Remember a fact about the user for future conversations."
    parameters_schema = {
        "type": "object",
        "properties": {
            "content": {"type": "string", "description": "The fact to remember"},
        },
        "required": ["content"],
    }

    async def run(self, principal: Principal, arguments: Dict[str, Any]) -> Any:
        records = await self.memory.add(
            [{"role": "user", "content": arguments["content"]}],
            principal.user_id,
            metadata={"source": "agent"}
        )
        return [record.to_wire() for record in records]


class ListMemoriesTool(MemoryTool):
    name = "list_memories"
    description = "List the most recent memories about the user."
    parameters_schema = {
        "type": "object",
        "properties": {
            "limit": {"type": "integer", "minimum": 1, "maximum": 100},
        },
    }

    async def run(self, principal: Principal, arguments: Dict[str, Any]) -> Any:
        records = await self.memory.list(principal.user_id, limit=arguments.get("limit") or 20)
        return [record.to_wire() for record in records]


class UpdateMemoryTool(MemoryTool):
    name = "update_memory"
    description = "Correct a stored memory. Search or list memories first to find its id."
    parameters_schema = {
        "type": "object",
        "properties": {
            "memoryId": {"type": "string"},
            "content": {"type": "string", "description": "Replacement content"},
        },
        "required": ["memoryId", "content"],
    }

    async def run(self, principal: Principal, arguments: Dict[str, Any]) -> Any:
        record = await self.memory.update(arguments["memoryId"], arguments["content"], principal.user_id)
        return record.to_wire()


class DeleteMemoryTool(MemoryTool):
    name = "delete_memory"
    description = "Forget a stored memory by id."
    parameters_schema = {
        "type": "object",
        "properties": {
            "memoryId": {"type": "string"},
        },
        "required": ["memoryId"],
    }

    async def run(self, principal: Principal, arguments: Dict[str, Any]) -> Any:
        await self.memory.delete(arguments["memoryId"], principal.user_id)
        return {"memoryId": arguments["memoryId"], "deleted": True}
