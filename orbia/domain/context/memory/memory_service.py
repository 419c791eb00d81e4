"""
Long-term memory: authoritative semantic store plus best-effort graph index.

Every operation is scoped by user id. Records are always resolved through the
semantic store; the graph only contributes relationships.
"""

from collections import OrderedDict
from typing import Any, Awaitable, Dict, List, Optional, TypeVar
import asyncio
import structlog
from langchain_core.embeddings import Embeddings

from orbia.domain.errors import (
    InvalidRequestError, MemoryNotFoundError, OrbiaError, StoreTimeoutError, StoreUnavailableError
)
from orbia.domain.models.memory import (
    GraphNode, MemoryGraph, MemoryHistoryEntry, MemoryRecord, RelationType, ScoredMemory, content_hash
)
from .fact_extractor import FactExtractor, UserMessageExtractor
from .graph_memory_store import GraphMemoryStore
from .vector_memory_store import SemanticMemoryStore

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class MemoryService:
    """Dual-write memory subsystem"""

    def __init__(
        self,
        semantic_store: SemanticMemoryStore,
        graph_store: GraphMemoryStore,
        embeddings: Embeddings,
        extractor: Optional[FactExtractor] = None,
        timeout: float = 10.0,
        relate_threshold: float = 0.75,
        relate_limit: int = 3,
        max_pending_links: int = 1000
    ):
        self.semantic_store = semantic_store
        self.graph_store = graph_store
        self.embeddings = embeddings
        self.extractor = extractor or UserMessageExtractor()
        self.timeout = timeout
        self.relate_threshold = relate_threshold
        self.relate_limit = relate_limit
        self.max_pending_links = max_pending_links
        # Records whose HAS_MEMORY link failed, oldest first, keyed by memory id
        self.pending_graph_links: "OrderedDict[str, MemoryRecord]" = OrderedDict()

    async def add(
        self,
        messages: List[Dict[str, str]],
        user_id: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> List[MemoryRecord]:
        """Extract facts from messages and store each new one"""

        self._require_user(user_id)
        await self._replay_graph_links(user_id)
        facts = await self._call(self.extractor.extract(messages), "extract")

        added: List[MemoryRecord] = []
        for fact in facts:
            existing = await self._call(
                self.semantic_store.find_by_hash(user_id, content_hash(fact)), "find_by_hash"
            )
            if existing:
                logger.debug("Skipping duplicate memory", user_id=user_id, memory_id=existing.id)
                continue

            embedding = await self._call(self.embeddings.aembed_query(fact), "embed")
            record = MemoryRecord(user_id=user_id, content=fact, metadata=dict(metadata or {}))
            record = await self._call(self.semantic_store.insert(record, embedding), "insert")
            added.append(record)

            await self._index_in_graph(user_id, record, embedding)

        logger.info("Added memories", user_id=user_id, count=len(added))
        return added

    async def search(
        self,
        query: str,
        user_id: str,
        limit: int = 5,
        threshold: Optional[float] = None
    ) -> List[ScoredMemory]:
        """Similarity search within one user's memories"""

        self._require_user(user_id)
        if not query or not query.strip():
            return []

        embedding = await self._call(self.embeddings.aembed_query(query), "embed")
        return await self._call(
            self.semantic_store.search(user_id, embedding, limit, threshold), "search"
        )

    async def get(self, memory_id: str, user_id: str) -> MemoryRecord:
        return await self._owned(memory_id, user_id)

    async def list(self, user_id: str, limit: int = 50, page: int = 1) -> List[MemoryRecord]:
        self._require_user(user_id)
        offset = max(page - 1, 0) * limit
        return await self._call(self.semantic_store.list_for_user(user_id, limit, offset), "list")

    async def update(self, memory_id: str, content: str, user_id: str) -> MemoryRecord:
        """Replace a record's content; the previous version goes to history"""

        if not content or not content.strip():
            raise InvalidRequestError("Memory content is required", fields={"content": "required"})
        await self._owned(memory_id, user_id)

        embedding = await self._call(self.embeddings.aembed_query(content), "embed")
        updated = await self._call(self.semantic_store.update(memory_id, content, embedding), "update")
        if updated is None:
            raise MemoryNotFoundError(f"Memory {memory_id} not found")

        await self._graph_write(self.graph_store.update_memory(memory_id, content), "update_memory",
                                user_id=user_id, memory_id=memory_id)
        return updated

    async def delete(self, memory_id: str, user_id: str) -> None:
        await self._owned(memory_id, user_id)
        deleted = await self._call(self.semantic_store.delete(memory_id), "delete")
        if not deleted:
            raise MemoryNotFoundError(f"Memory {memory_id} not found")

        self.pending_graph_links.pop(memory_id, None)
        await self._graph_write(self.graph_store.remove_memory(memory_id), "remove_memory",
                                user_id=user_id, memory_id=memory_id)
        logger.info("Deleted memory", user_id=user_id, memory_id=memory_id)

    async def delete_all(self, user_id: str) -> int:
        self._require_user(user_id)
        deleted = await self._call(self.semantic_store.delete_all(user_id), "delete_all")
        self._forget_pending(user_id)
        await self._graph_write(self.graph_store.remove_user_memories(user_id), "remove_user_memories",
                                user_id=user_id)
        logger.info("Deleted all memories", user_id=user_id, count=len(deleted))
        return len(deleted)

    async def history(self, memory_id: str, user_id: str) -> List[MemoryHistoryEntry]:
        await self._owned(memory_id, user_id)
        return await self._call(self.semantic_store.history(memory_id), "history")

    async def get_graph(self, user_id: str) -> MemoryGraph:
        """Graph projection whose memory nodes are confirmed against the semantic store"""

        self._require_user(user_id)
        raw = await self._call(self.graph_store.get_user_graph(user_id), "get_user_graph")

        nodes: List[GraphNode] = []
        confirmed = {user_id}
        for node in raw.nodes:
            if node.type == "user":
                if node.id == user_id:
                    nodes.append(node)
                continue
            record = await self._call(self.semantic_store.get(node.id), "get")
            if record is None or record.user_id != user_id:
                continue
            confirmed.add(node.id)
            nodes.append(GraphNode(
                id=record.id,
                name=record.content,
                type="memory",
                properties={"content": record.content, "created_at": record.created_at.isoformat()}
            ))

        edges = [
            e for e in raw.edges
            if e.source_id in confirmed and e.target_id in confirmed
        ]
        if len(nodes) == 1 and not edges:
            nodes = []
        return MemoryGraph(nodes=nodes, edges=edges)

    async def reconcile(self, user_id: str) -> int:
        """Replay failed graph links and re-link records missing from the graph"""

        self._require_user(user_id)
        linked = await self._call(self.graph_store.linked_memory_ids(user_id), "linked_memory_ids")

        repaired = 0
        offset = 0
        page_size = 200
        while True:
            records = await self._call(
                self.semantic_store.list_for_user(user_id, page_size, offset), "list"
            )
            for record in records:
                if record.id in linked:
                    continue
                if await self._graph_write(self.graph_store.link_memory(user_id, record), "link_memory",
                                           user_id=user_id, memory_id=record.id):
                    repaired += 1
            if len(records) < page_size:
                break
            offset += page_size

        self._forget_pending(user_id)
        logger.info("Reconciled memory graph", user_id=user_id, repaired=repaired)
        return repaired

    async def _index_in_graph(self, user_id: str, record: MemoryRecord, embedding: List[float]):
        linked = await self._graph_write(
            self.graph_store.link_memory(user_id, record), "link_memory",
            user_id=user_id, memory_id=record.id
        )
        if not linked:
            self._queue_graph_link(record)
            return

        try:
            neighbours = await self._call(
                self.semantic_store.search(user_id, embedding, self.relate_limit + 1, self.relate_threshold),
                "search"
            )
        except OrbiaError as e:
            logger.warning("Skipping relation inference", memory_id=record.id, error=str(e))
            return

        for hit in neighbours:
            if hit.record.id == record.id:
                continue
            await self._graph_write(
                self.graph_store.relate(record.id, hit.record.id, hit.score), "relate",
                user_id=user_id, memory_id=record.id, relation=RelationType.RELATES_TO.value
            )

    def _queue_graph_link(self, record: MemoryRecord):
        self.pending_graph_links[record.id] = record
        self.pending_graph_links.move_to_end(record.id)
        while len(self.pending_graph_links) > self.max_pending_links:
            dropped_id, dropped = self.pending_graph_links.popitem(last=False)
            # reconcile() still finds it through the semantic store
            logger.warning("Dropped queued graph link", user_id=dropped.user_id, memory_id=dropped_id)

    async def _replay_graph_links(self, user_id: str) -> int:
        """Retry this user's failed links; stops at the first failure"""

        replayed = 0
        for record in [r for r in self.pending_graph_links.values() if r.user_id == user_id]:
            if not await self._graph_write(self.graph_store.link_memory(user_id, record), "link_memory",
                                           user_id=user_id, memory_id=record.id):
                break
            self.pending_graph_links.pop(record.id, None)
            replayed += 1
        if replayed:
            logger.info("Replayed queued graph links", user_id=user_id, count=replayed)
        return replayed

    def _forget_pending(self, user_id: str):
        for memory_id in [m for m, r in self.pending_graph_links.items() if r.user_id == user_id]:
            del self.pending_graph_links[memory_id]

    async def _graph_write(self, awaitable: Awaitable[Any], operation: str, **log_fields: Any) -> bool:
        """Best-effort graph write; failures are logged and reported as False"""

        try:
            await asyncio.wait_for(awaitable, timeout=self.timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning("Graph write timed out", operation=operation, **log_fields)
        except Exception as e:
            logger.warning("Graph write failed", operation=operation, error=str(e), **log_fields)
        return False

    async def _owned(self, memory_id: str, user_id: str) -> MemoryRecord:
        self._require_user(user_id)
        record = await self._call(self.semantic_store.get(memory_id), "get")
        if record is None or record.user_id != user_id:
            raise MemoryNotFoundError(f"Memory {memory_id} not found")
        return record

    @staticmethod
    def _require_user(user_id: str):
        if not user_id:
            raise InvalidRequestError("userId is required", fields={"userId": "required"})

    async def _call(self, awaitable: Awaitable[T], operation: str) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error("Memory store timeout", operation=operation, timeout=self.timeout)
            raise StoreTimeoutError(f"Memory operation '{operation}' timed out")
        except OrbiaError:
            raise
        except Exception as e:
            logger.error("Memory backend failed", operation=operation, error=str(e))
            raise StoreUnavailableError(
                f"Memory operation '{operation}' failed", details={"operation": operation}
            ) from e
