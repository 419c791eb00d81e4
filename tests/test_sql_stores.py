import asyncio
from datetime import datetime, timedelta

import pytest

from orbia.domain.errors import CheckpointConflictError, ThreadConflictError
from orbia.domain.models.agent_state import Checkpoint, Message, MessageRole, Thread
from orbia.domain.models.memory import MemoryEvent, MemoryRecord
from orbia.infrastructure.persistence import Database, SqlCheckpointStore, SqlSemanticMemoryStore

from .conftest import OTHER_USER_ID, TEST_USER_ID, KeywordEmbeddings

NOW = datetime(2025, 1, 1, 12, 0, 0)
TTL = timedelta(hours=24)


def thread_for(user_id: str, thread_id: str = "thread_1") -> Thread:
    return Thread(thread_id=thread_id, user_id=user_id, created_at=NOW, last_accessed_at=NOW)


def checkpoint(thread_id: str, *contents: str) -> Checkpoint:
    return Checkpoint.empty(thread_id).with_messages(
        [Message(role=MessageRole.USER, content=c) for c in contents]
    )


@pytest.fixture
async def file_database(tmp_path):
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'orbia.db'}")
    await db.initialize()
    yield db
    await db.close()


@pytest.mark.unit
class TestSqlCheckpointStore:
    async def test_thread_round_trip(self, database):
        store = SqlCheckpointStore(database)
        await store.create_thread(thread_for(TEST_USER_ID))

        by_user = await store.get_thread_by_user(TEST_USER_ID)
        assert by_user.thread_id == "thread_1"
        assert (await store.get_thread("thread_1")).user_id == TEST_USER_ID
        assert await store.get_thread_by_user(OTHER_USER_ID) is None

    async def test_second_thread_for_user_conflicts(self, database):
        store = SqlCheckpointStore(database)
        await store.create_thread(thread_for(TEST_USER_ID, "thread_1"))

        with pytest.raises(ThreadConflictError):
            await store.create_thread(thread_for(TEST_USER_ID, "thread_2"))

    async def test_put_and_get_checkpoint(self, database):
        store = SqlCheckpointStore(database)
        await store.create_thread(thread_for(TEST_USER_ID))

        saved = await store.put_checkpoint(checkpoint("thread_1", "hi"), None, NOW, NOW + TTL)
        loaded = await store.get_checkpoint("thread_1")

        assert saved.version == 1
        assert loaded.version == 1
        assert loaded.expires_at == NOW + TTL
        assert [m.content for m in loaded.messages] == ["hi"]

    async def test_version_mismatch_conflicts(self, database):
        store = SqlCheckpointStore(database)
        await store.create_thread(thread_for(TEST_USER_ID))
        await store.put_checkpoint(checkpoint("thread_1", "a"), None, NOW, NOW + TTL)
        await store.put_checkpoint(checkpoint("thread_1", "a", "b"), 1, NOW, NOW + TTL)

        with pytest.raises(CheckpointConflictError) as exc_info:
            await store.put_checkpoint(checkpoint("thread_1", "a", "c"), 1, NOW, NOW + TTL)

        assert exc_info.value.current_version == 2

    async def test_expired_checkpoint_is_replaced_as_absent(self, database):
        store = SqlCheckpointStore(database)
        await store.create_thread(thread_for(TEST_USER_ID))
        await store.put_checkpoint(checkpoint("thread_1", "old"), None, NOW, NOW + TTL)

        later = NOW + TTL
        saved = await store.put_checkpoint(checkpoint("thread_1", "new"), None, later, later + TTL)

        assert saved.version == 1
        assert [m.content for m in (await store.get_checkpoint("thread_1")).messages] == ["new"]

    async def test_delete_expired_keeps_threads(self, database):
        store = SqlCheckpointStore(database)
        await store.create_thread(thread_for(TEST_USER_ID))
        await store.put_checkpoint(checkpoint("thread_1", "a"), None, NOW, NOW + TTL)

        assert await store.delete_checkpoint_if_expired("thread_1", NOW) is False
        assert await store.delete_expired(NOW + TTL) == 1
        assert await store.get_checkpoint("thread_1") is None
        assert await store.get_thread("thread_1") is not None

    async def test_concurrent_thread_creation_has_one_winner(self, file_database):
        store = SqlCheckpointStore(file_database)

        results = await asyncio.gather(
            store.create_thread(thread_for(TEST_USER_ID, "thread_a")),
            store.create_thread(thread_for(TEST_USER_ID, "thread_b")),
            return_exceptions=True,
        )

        assert sum(isinstance(r, Thread) for r in results) == 1
        assert sum(isinstance(r, ThreadConflictError) for r in results) == 1

    async def test_concurrent_saves_with_same_version_have_one_winner(self, file_database):
        store = SqlCheckpointStore(file_database)
        await store.create_thread(thread_for(TEST_USER_ID))
        await store.put_checkpoint(checkpoint("thread_1", "a"), None, NOW, NOW + TTL)

        results = await asyncio.gather(
            store.put_checkpoint(checkpoint("thread_1", "a", "b"), 1, NOW, NOW + TTL),
            store.put_checkpoint(checkpoint("thread_1", "a", "c"), 1, NOW, NOW + TTL),
            return_exceptions=True,
        )

        assert sum(isinstance(r, Checkpoint) for r in results) == 1
        assert sum(isinstance(r, CheckpointConflictError) for r in results) == 1
        assert (await store.get_checkpoint("thread_1")).version == 2


@pytest.mark.unit
class TestSqlSemanticMemoryStore:
    async def _insert(self, store, user_id: str, content: str) -> MemoryRecord:
        embedding = KeywordEmbeddings().embed_query(content)
        return await store.insert(MemoryRecord(user_id=user_id, content=content), embedding)

    async def test_search_is_scoped_and_ranked(self, database):
        store = SqlSemanticMemoryStore(database)
        await self._insert(store, TEST_USER_ID, "favorite color is blue")
        await self._insert(store, TEST_USER_ID, "works at a bakery")
        await self._insert(store, OTHER_USER_ID, "favorite color is red")

        hits = await store.search(TEST_USER_ID, KeywordEmbeddings().embed_query("favorite color"), limit=5)

        assert hits[0].record.content == "favorite color is blue"
        assert all(hit.record.user_id == TEST_USER_ID for hit in hits)
        assert hits == sorted(hits, key=lambda h: h.score, reverse=True)

    async def test_update_and_delete_write_history(self, database):
        store = SqlSemanticMemoryStore(database)
        record = await self._insert(store, TEST_USER_ID, "lives in Porto")

        updated = await store.update(record.id, "lives in Lisbon", KeywordEmbeddings().embed_query("lives in Lisbon"))
        assert updated.content == "lives in Lisbon"
        assert await store.delete(record.id) is True
        assert await store.get(record.id) is None

        history = await store.history(record.id)
        assert [entry.event for entry in history] == [MemoryEvent.ADD, MemoryEvent.UPDATE, MemoryEvent.DELETE]
        assert history[1].previous_content == "lives in Porto"
        assert history[1].new_content == "lives in Lisbon"

    async def test_find_by_hash_and_delete_all(self, database):
        store = SqlSemanticMemoryStore(database)
        record = await self._insert(store, TEST_USER_ID, "Has two cats")
        await self._insert(store, OTHER_USER_ID, "Has two cats")

        found = await store.find_by_hash(TEST_USER_ID, record.hash)
        assert found.id == record.id

        deleted = await store.delete_all(TEST_USER_ID)
        assert deleted == [record.id]
        assert await store.list_for_user(TEST_USER_ID, 10) == []
        assert len(await store.list_for_user(OTHER_USER_ID, 10)) == 1
