from typing import Dict, List, Any, Optional
import asyncio

import httpx
import structlog
from langchain_core.utils.function_calling import convert_to_openai_tool

from orbia.config import Settings
from orbia.domain.context.memory.memory_service import MemoryService
from orbia.domain.errors import ErrorCode
from orbia.domain.models.tool_result import ToolResult
from orbia.infrastructure.security.credentials import CredentialProvider
from orbia.infrastructure.security.session import Principal
from .base import Tool
from .gmail import ListGmailMessagesTool, ReadGmailMessageTool, SendGmailMessageTool
from .google_calendar import CreateCalendarEventTool, DeleteCalendarEventTool, ListCalendarEventsTool
from .google_docs import GetDocumentContentTool, ListDocumentsTool
from .memory_tools import (
    AddMemoryTool, DeleteMemoryTool, ListMemoriesTool, SearchMemoriesTool, UpdateMemoryTool
)

logger = structlog.get_logger(__name__)


class ToolRegistry:
    """Registry for managing available tools"""

    def __init__(self, timeout: float = 20.0):
        self.tools: Dict[str, Tool] = {}
        self.tool_categories: Dict[str, List[str]] = {}
        self.timeout = timeout

    def register(self, tool: Tool):
        """Register a new tool"""

        if tool.name in self.tools:
            raise ValueError(f"Tool '{tool.name}' is already registered")

        self.tools[tool.name] = tool
        self.tool_categories.setdefault(tool.category, []).append(tool.name)

    def get_tool(self, name: str) -> Optional[Tool]:
        return self.tools.get(name)

    def get_tools_by_category(self, category: str) -> List[Tool]:
        """Get tools by category"""

        names = self.tool_categories.get(category, [])
        return [self.tools[name] for name in names if name in self.tools]

    def search_tools(self, query: str) -> List[Tool]:
        """Search tools by name or description"""

        query_lower = query.lower()
        return [
            tool for tool in self.tools.values()
            if query_lower in tool.name.lower() or query_lower in tool.description.lower()
        ]

    def as_tool_definitions(self) -> List[Dict[str, Any]]:
        """Tool definitions in the shape chat models accept for bind_tools"""

        return [
            convert_to_openai_tool({
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.parameters_schema,
            })
            for tool in self.tools.values()
        ]

    async def execute(self, name: str, principal: Principal, arguments: Optional[Dict[str, Any]]) -> ToolResult:
        """Execute a tool by name; every failure comes back as a ToolResult"""

        tool = self.tools.get(name)
        if tool is None:
            return ToolResult.fail(ErrorCode.INVALID_REQUEST, f"Unknown tool '{name}'")
        if arguments is not None and not isinstance(arguments, dict):
            return ToolResult.fail(ErrorCode.INVALID_REQUEST, "Tool arguments must be an object")

        try:
            return await asyncio.wait_for(tool.execute(principal, arguments or {}), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning("Tool execution timeout", tool=name, timeout=self.timeout)
            return ToolResult.fail(
                ErrorCode.UPSTREAM_ERROR, f"{name} timed out", details={"timeout": self.timeout}
            )


def build_tool_registry(
    settings: Settings,
    credentials: CredentialProvider,
    http: httpx.AsyncClient,
    memory: Optional[MemoryService] = None
) -> ToolRegistry:
    """Registry with the calendar, documents and mail tools, plus memory tools when a service is given"""

    registry = ToolRegistry(timeout=settings.tool_timeout)
    provider_timeout = settings.tool_timeout

    calendar_args = (credentials, http, settings.google_calendar_base_url, provider_timeout)
    registry.register(ListCalendarEventsTool(*calendar_args))
    registry.register(CreateCalendarEventTool(*calendar_args))
    registry.register(DeleteCalendarEventTool(*calendar_args))

    drive_args = (credentials, http, settings.google_drive_base_url, provider_timeout)
    registry.register(ListDocumentsTool(*drive_args))
    registry.register(GetDocumentContentTool(*drive_args, docs_base_url=settings.google_docs_base_url))

    gmail_args = (credentials, http, settings.gmail_base_url, provider_timeout)
    registry.register(ListGmailMessagesTool(*gmail_args))
    registry.register(ReadGmailMessageTool(*gmail_args))
    registry.register(SendGmailMessageTool(*gmail_args))

    if memory is not None:
        for tool_class in (SearchMemoriesTool, AddMemoryTool, ListMemoriesTool, UpdateMemoryTool, DeleteMemoryTool):
            registry.register(tool_class(memory))

    logger.info("Tool registry built", tools=sorted(registry.tools))
    return registry
