import asyncio
import json

import pytest

from orbia.domain.errors import ErrorCode
from orbia.domain.tool import GoogleTool, LocalTool, Tool, ToolRegistry
from orbia.infrastructure.security import Principal

from .conftest import OTHER_USER_ID, TEST_USER_ID

PROVIDER_TOOLS = {
    "list_calendar_events", "create_calendar_event", "delete_calendar_event",
    "list_documents", "get_document_content",
    "list_gmail_messages", "read_gmail_message", "send_gmail_message",
}
MEMORY_TOOLS = {"search_memories", "add_memory", "list_memories", "update_memory", "delete_memory"}


class SlowTool(LocalTool):
    name = "slow_tool"
    description = "Never finishes in time"
    requires_authentication = False

    async def run(self, principal, arguments):
        await asyncio.sleep(5)


class ExplodingTool(LocalTool):
    name = "exploding_tool"
    description = "Raises"
    requires_authentication = False

    async def run(self, principal, arguments):
        raise RuntimeError("boom")


@pytest.mark.unit
class TestRegistry:
    def test_builds_full_toolset(self, registry):
        assert set(registry.tools) == PROVIDER_TOOLS | MEMORY_TOOLS
        assert {t.name for t in registry.get_tools_by_category("calendar")} == {
            "list_calendar_events", "create_calendar_event", "delete_calendar_event"
        }

    def test_search_tools(self, registry):
        assert "send_gmail_message" in {t.name for t in registry.search_tools("email")}

    def test_duplicate_registration_fails(self, registry):
        with pytest.raises(ValueError):
            registry.register(registry.get_tool("add_memory"))

    def test_tools_must_implement_their_call(self):
        class Unfinished(GoogleTool):
            name = "unfinished"

        with pytest.raises(TypeError):
            Tool()
        with pytest.raises(TypeError):
            LocalTool()
        with pytest.raises(TypeError):
            Unfinished(credentials=None, http=None, base_url="https://example.com")

    def test_tool_definitions_for_model(self, registry):
        definitions = registry.as_tool_definitions()

        by_name = {d["function"]["name"]: d for d in definitions}
        assert set(by_name) == PROVIDER_TOOLS | MEMORY_TOOLS
        assert by_name["create_calendar_event"]["type"] == "function"
        assert by_name["create_calendar_event"]["function"]["parameters"]["required"] == ["summary", "start", "end"]

    async def test_unknown_tool(self, registry):
        result = await registry.execute("make_coffee", Principal(TEST_USER_ID), {})

        assert result.code == ErrorCode.INVALID_REQUEST

    async def test_non_object_arguments(self, registry):
        result = await registry.execute("list_memories", Principal(TEST_USER_ID), ["not", "a", "dict"])

        assert result.code == ErrorCode.INVALID_REQUEST

    async def test_timeout_is_upstream_error(self):
        registry = ToolRegistry(timeout=0.01)
        registry.register(SlowTool())

        result = await registry.execute("slow_tool", Principal(TEST_USER_ID), {})

        assert result.code == ErrorCode.UPSTREAM_ERROR
        assert result.details == {"timeout": 0.01}

    async def test_unexpected_exception_is_internal_error(self):
        registry = ToolRegistry()
        registry.register(ExplodingTool())

        result = await registry.execute("exploding_tool", Principal(TEST_USER_ID), {})

        assert result.success is False
        assert result.code == ErrorCode.INTERNAL_ERROR

    def test_result_envelope_serializes_without_empty_fields(self):
        from orbia.domain.models.tool_result import ToolResult

        assert json.loads(ToolResult.ok([1]).to_json()) == {"success": True, "data": [1]}
        assert json.loads(ToolResult.fail(ErrorCode.NOT_FOUND, "gone").to_json()) == {
            "success": False, "error": "gone", "code": "NOT_FOUND"
        }


@pytest.mark.unit
class TestMemoryTools:
    async def test_add_then_search_is_scoped_to_caller(self, registry):
        await registry.execute("add_memory", Principal.anonymous(TEST_USER_ID), {"content": "Prefers aisle seats"})

        mine = await registry.execute("search_memories", Principal.anonymous(TEST_USER_ID), {"query": "aisle seats"})
        theirs = await registry.execute("search_memories", Principal.anonymous(OTHER_USER_ID), {"query": "aisle seats"})

        assert [m["memory"] for m in mine.data] == ["Prefers aisle seats"]
        assert theirs.data == []

    async def test_update_foreign_memory_is_not_found(self, registry):
        added = await registry.execute("add_memory", Principal(TEST_USER_ID), {"content": "Prefers aisle seats"})
        memory_id = added.data[0]["id"]

        result = await registry.execute(
            "update_memory", Principal(OTHER_USER_ID), {"memoryId": memory_id, "content": "Prefers window seats"}
        )

        assert result.code == ErrorCode.NOT_FOUND

    async def test_delete_memory(self, registry):
        added = await registry.execute("add_memory", Principal(TEST_USER_ID), {"content": "Has a standing desk"})
        memory_id = added.data[0]["id"]

        deleted = await registry.execute("delete_memory", Principal(TEST_USER_ID), {"memoryId": memory_id})
        listed = await registry.execute("list_memories", Principal(TEST_USER_ID), {})

        assert deleted.data == {"memoryId": memory_id, "deleted": True}
        assert listed.data == []
