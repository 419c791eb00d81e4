from unittest.mock import AsyncMock

import pytest
from langchain_core.messages import AIMessage

from orbia.domain.context.memory import LLMFactExtractor, MemoryService
from orbia.domain.errors import ErrorCode, InvalidRequestError, MemoryNotFoundError, StoreUnavailableError
from orbia.domain.models.memory import MemoryEvent, RelationType

from .conftest import OTHER_USER_ID, TEST_USER_ID, ScriptedChatModel


def user_says(*contents: str):
    return [{"role": "user", "content": c} for c in contents]


@pytest.mark.unit
class TestAddAndSearch:
    async def test_round_trip(self, memory_service: MemoryService):
        added = await memory_service.add(user_says("My favorite color is blue"), TEST_USER_ID)

        hits = await memory_service.search("what is my favorite color", TEST_USER_ID)

        assert len(added) == 1
        assert hits[0].record.id == added[0].id
        assert hits[0].score > 0.3

    async def test_users_are_isolated(self, memory_service):
        await memory_service.add(user_says("My favorite color is blue"), TEST_USER_ID)
        await memory_service.add(user_says("My favorite color is green"), OTHER_USER_ID)

        hits = await memory_service.search("favorite color", OTHER_USER_ID)

        assert [h.record.content for h in hits] == ["My favorite color is green"]

    async def test_duplicate_facts_are_skipped(self, memory_service):
        await memory_service.add(user_says("I have two cats"), TEST_USER_ID)

        again = await memory_service.add(user_says("  i have two CATS "), TEST_USER_ID)

        assert again == []
        assert len(await memory_service.list(TEST_USER_ID)) == 1

    async def test_only_user_turns_become_memories(self, memory_service):
        added = await memory_service.add(
            [{"role": "user", "content": "I run on Sundays"}, {"role": "assistant", "content": "Great!"}],
            TEST_USER_ID,
            metadata={"source": "conversation"},
        )

        assert [r.content for r in added] == ["I run on Sundays"]
        assert added[0].metadata == {"source": "conversation"}

    async def test_empty_query_returns_nothing(self, memory_service):
        await memory_service.add(user_says("I like tea"), TEST_USER_ID)

        assert await memory_service.search("   ", TEST_USER_ID) == []

    async def test_user_id_is_required(self, memory_service):
        with pytest.raises(InvalidRequestError) as exc_info:
            await memory_service.search("tea", "")

        assert exc_info.value.fields == {"userId": "required"}

    async def test_llm_extractor_feeds_add(self, semantic_store, graph_store, embeddings):
        llm = ScriptedChatModel(replies=[AIMessage(content='{"facts": ["Prefers morning meetings"]}')], prompts=[])
        service = MemoryService(semantic_store, graph_store, embeddings, extractor=LLMFactExtractor(llm))

        added = await service.add(user_says("Please never book me after lunch, mornings work best"), TEST_USER_ID)

        assert [r.content for r in added] == ["Prefers morning meetings"]


@pytest.mark.unit
class TestRecordOperations:
    async def test_get_foreign_record_is_not_found(self, memory_service):
        [record] = await memory_service.add(user_says("I live in Lisbon"), TEST_USER_ID)

        with pytest.raises(MemoryNotFoundError):
            await memory_service.get(record.id, OTHER_USER_ID)

    async def test_update_keeps_history(self, memory_service):
        [record] = await memory_service.add(user_says("I live in Porto"), TEST_USER_ID)

        updated = await memory_service.update(record.id, "I live in Lisbon", TEST_USER_ID)
        history = await memory_service.history(record.id, TEST_USER_ID)

        assert updated.content == "I live in Lisbon"
        assert [e.event for e in history] == [MemoryEvent.ADD, MemoryEvent.UPDATE]
        assert history[-1].previous_content == "I live in Porto"

    async def test_update_rejects_empty_content(self, memory_service):
        [record] = await memory_service.add(user_says("I live in Porto"), TEST_USER_ID)

        with pytest.raises(InvalidRequestError) as exc_info:
            await memory_service.update(record.id, " ", TEST_USER_ID)

        assert "content" in exc_info.value.fields

    async def test_delete_removes_from_get_and_search(self, memory_service):
        [record] = await memory_service.add(user_says("My dentist is Dr. Silva"), TEST_USER_ID)

        await memory_service.delete(record.id, TEST_USER_ID)

        with pytest.raises(MemoryNotFoundError):
            await memory_service.get(record.id, TEST_USER_ID)
        assert await memory_service.search("dentist Silva", TEST_USER_ID) == []

    async def test_delete_by_other_user_leaves_record(self, memory_service):
        [record] = await memory_service.add(user_says("My dentist is Dr. Silva"), TEST_USER_ID)

        with pytest.raises(MemoryNotFoundError):
            await memory_service.delete(record.id, OTHER_USER_ID)

        assert (await memory_service.get(record.id, TEST_USER_ID)).id == record.id

    async def test_delete_all_is_per_user(self, memory_service):
        await memory_service.add(user_says("fact one", "fact two"), TEST_USER_ID)
        await memory_service.add(user_says("fact three"), OTHER_USER_ID)

        assert await memory_service.delete_all(TEST_USER_ID) == 2
        assert await memory_service.list(TEST_USER_ID) == []
        assert len(await memory_service.list(OTHER_USER_ID)) == 1

    async def test_list_pages(self, memory_service):
        await memory_service.add(user_says("alpha", "beta", "gamma"), TEST_USER_ID)

        first = await memory_service.list(TEST_USER_ID, limit=2, page=1)
        second = await memory_service.list(TEST_USER_ID, limit=2, page=2)

        assert len(first) == 2
        assert len(second) == 1
        assert {r.id for r in first}.isdisjoint({r.id for r in second})


@pytest.mark.unit
class TestGraph:
    async def test_graph_links_and_relates_memories(self, memory_service):
        await memory_service.add(user_says("I love hiking in the mountains"), TEST_USER_ID)
        await memory_service.add(user_says("I love hiking in the mountains with my dog"), TEST_USER_ID)

        graph = await memory_service.get_graph(TEST_USER_ID)

        types = [e.type for e in graph.edges]
        assert types.count(RelationType.HAS_MEMORY) == 2
        assert RelationType.RELATES_TO in types
        assert {n.type for n in graph.nodes} == {"user", "memory"}
        assert set(graph.to_wire()) == {"nodes", "links"}

    async def test_graph_drops_nodes_missing_from_semantic_store(self, memory_service, semantic_store):
        [kept] = await memory_service.add(user_says("I drink oat milk"), TEST_USER_ID)
        [orphan] = await memory_service.add(user_says("I play chess"), TEST_USER_ID)
        # Remove behind the service's back so the graph still references it
        await semantic_store.delete(orphan.id)

        graph = await memory_service.get_graph(TEST_USER_ID)

        memory_ids = {n.id for n in graph.nodes if n.type == "memory"}
        assert memory_ids == {kept.id}
        assert all(orphan.id not in (e.source_id, e.target_id) for e in graph.edges)

    async def test_empty_graph_for_unknown_user(self, memory_service):
        graph = await memory_service.get_graph("nobody")

        assert graph.nodes == []
        assert graph.edges == []

    async def test_graph_failure_does_not_fail_add(self, memory_service, graph_store):
        graph_store.link_memory = AsyncMock(side_effect=ConnectionError("neo4j down"))

        added = await memory_service.add(user_says("I speak Portuguese"), TEST_USER_ID)

        assert len(added) == 1
        assert len(memory_service.pending_graph_links) == 1
        assert (await memory_service.search("speak Portuguese", TEST_USER_ID))[0].record.id == added[0].id

    async def test_reconcile_relinks_missing_records(self, memory_service, graph_store):
        real_link = graph_store.link_memory
        graph_store.link_memory = AsyncMock(side_effect=ConnectionError("neo4j down"))
        [record] = await memory_service.add(user_says("I speak Portuguese"), TEST_USER_ID)
        graph_store.link_memory = real_link

        repaired = await memory_service.reconcile(TEST_USER_ID)

        assert repaired == 1
        assert len(memory_service.pending_graph_links) == 0
        assert record.id in await graph_store.linked_memory_ids(TEST_USER_ID)

    async def test_next_add_replays_failed_graph_link(self, memory_service, graph_store):
        real_link = graph_store.link_memory
        graph_store.link_memory = AsyncMock(side_effect=ConnectionError("neo4j down"))
        [first] = await memory_service.add(user_says("I speak Portuguese"), TEST_USER_ID)
        graph_store.link_memory = real_link

        [second] = await memory_service.add(user_says("I play the cello"), TEST_USER_ID)

        linked = await graph_store.linked_memory_ids(TEST_USER_ID)
        assert {first.id, second.id} <= set(linked)
        assert len(memory_service.pending_graph_links) == 0

    async def test_replay_waits_while_graph_is_down(self, memory_service, graph_store):
        graph_store.link_memory = AsyncMock(side_effect=ConnectionError("neo4j down"))

        await memory_service.add(user_says("I speak Portuguese"), TEST_USER_ID)
        await memory_service.add(user_says("I play the cello"), TEST_USER_ID)

        assert len(memory_service.pending_graph_links) == 2

    async def test_pending_graph_links_are_bounded(self, semantic_store, graph_store, embeddings):
        service = MemoryService(semantic_store, graph_store, embeddings, max_pending_links=3)
        real_link = graph_store.link_memory
        graph_store.link_memory = AsyncMock(side_effect=ConnectionError("neo4j down"))

        for n in range(5):
            await service.add(user_says(f"Fact number {n}"), f"user-{n}")

        assert len(service.pending_graph_links) == 3
        assert {r.user_id for r in service.pending_graph_links.values()} == {"user-2", "user-3", "user-4"}

        graph_store.link_memory = real_link
        assert await service.reconcile("user-0") == 1

    async def test_deleted_record_is_not_replayed(self, memory_service, graph_store):
        real_link = graph_store.link_memory
        graph_store.link_memory = AsyncMock(side_effect=ConnectionError("neo4j down"))
        [record] = await memory_service.add(user_says("I speak Portuguese"), TEST_USER_ID)
        graph_store.link_memory = real_link

        await memory_service.delete(record.id, TEST_USER_ID)
        await memory_service.add(user_says("I play the cello"), TEST_USER_ID)

        assert record.id not in await graph_store.linked_memory_ids(TEST_USER_ID)


@pytest.mark.unit
class TestBackendFailures:
    async def test_embedding_failure_is_upstream_error(self, memory_service, embeddings):
        embeddings.aembed_query = AsyncMock(side_effect=RuntimeError("embeddings API 503"))

        with pytest.raises(StoreUnavailableError) as exc_info:
            await memory_service.search("favorite color", TEST_USER_ID)

        assert exc_info.value.code == ErrorCode.UPSTREAM_ERROR
        assert exc_info.value.details == {"operation": "embed"}

    async def test_store_failure_is_upstream_error(self, memory_service, semantic_store):
        semantic_store.list_for_user = AsyncMock(side_effect=ConnectionError("database gone"))

        with pytest.raises(StoreUnavailableError):
            await memory_service.list(TEST_USER_ID)

    async def test_non_text_content_is_ignored(self, memory_service):
        added = await memory_service.add(
            [{"role": "user", "content": None}, {"role": "user", "content": 42}, {"content": "no role"}],
            TEST_USER_ID,
        )

        assert added == []
