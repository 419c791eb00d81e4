from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence
import asyncio
import math
from datetime import datetime

from orbia.domain.models.memory import (
    MemoryEvent, MemoryHistoryEntry, MemoryRecord, ScoredMemory, content_hash
)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors, 0.0 for zero or mismatched vectors"""

    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


class SemanticMemoryStore(ABC):
    """Authoritative store of memory records, their embeddings and version history"""

    @abstractmethod
    async def insert(self, record: MemoryRecord, embedding: List[float]) -> MemoryRecord:
        pass

    @abstractmethod
    async def get(self, memory_id: str) -> Optional[MemoryRecord]:
        pass

    @abstractmethod
    async def find_by_hash(self, user_id: str, hash_value: str) -> Optional[MemoryRecord]:
        pass

    @abstractmethod
    async def list_for_user(self, user_id: str, limit: int, offset: int = 0) -> List[MemoryRecord]:
        pass

    @abstractmethod
    async def search(
        self,
        user_id: str,
        embedding: List[float],
        limit: int,
        threshold: Optional[float] = None
    ) -> List[ScoredMemory]:
        """Similarity search restricted to one user's records, best match first"""
        pass

    @abstractmethod
    async def update(self, memory_id: str, content: str, embedding: List[float]) -> Optional[MemoryRecord]:
        pass

    @abstractmethod
    async def delete(self, memory_id: str) -> bool:
        pass

    @abstractmethod
    async def delete_all(self, user_id: str) -> List[str]:
        """Delete every record of a user and return the deleted ids"""
        pass

    @abstractmethod
    async def history(self, memory_id: str) -> List[MemoryHistoryEntry]:
        pass

    async def close(self) -> None:
        pass


class InMemorySemanticStore(SemanticMemoryStore):
    """In-memory semantic store for development and tests"""

    def __init__(self):
        self.memories: Dict[str, MemoryRecord] = {}
        self.embeddings: Dict[str, List[float]] = {}
        self.history_log: Dict[str, List[MemoryHistoryEntry]] = {}
        self._lock = asyncio.Lock()

    async def insert(self, record: MemoryRecord, embedding: List[float]) -> MemoryRecord:
        async with self._lock:
            self.memories[record.id] = record
            self.embeddings[record.id] = list(embedding)
            self._append_history(record.id, None, record.content, MemoryEvent.ADD)
            return record.model_copy()

    async def get(self, memory_id: str) -> Optional[MemoryRecord]:
        async with self._lock:
            record = self.memories.get(memory_id)
            return record.model_copy() if record else None

    async def find_by_hash(self, user_id: str, hash_value: str) -> Optional[MemoryRecord]:
        async with self._lock:
            for record in self.memories.values():
                if record.user_id == user_id and record.hash == hash_value:
                    return record.model_copy()
            return None

    async def list_for_user(self, user_id: str, limit: int, offset: int = 0) -> List[MemoryRecord]:
        async with self._lock:
            records = sorted(
                (r for r in self.memories.values() if r.user_id == user_id),
                key=lambda r: r.created_at,
                reverse=True
            )
            return [r.model_copy() for r in records[offset:offset + limit]]

    async def search(
        self,
        user_id: str,
        embedding: List[float],
        limit: int,
        threshold: Optional[float] = None
    ) -> List[ScoredMemory]:
        async with self._lock:
            results = []
            for memory_id, record in self.memories.items():
                if record.user_id != user_id:
                    continue
                score = cosine_similarity(embedding, self.embeddings.get(memory_id, []))
                if threshold is not None and score < threshold:
                    continue
                results.append(ScoredMemory(record=record.model_copy(), score=score))

            results.sort(key=lambda hit: hit.score, reverse=True)
            return results[:limit]

    async def update(self, memory_id: str, content: str, embedding: List[float]) -> Optional[MemoryRecord]:
        async with self._lock:
            record = self.memories.get(memory_id)
            if record is None:
                return None
            updated = record.model_copy(update={
                "content": content,
                "hash": content_hash(content),
                "updated_at": datetime.utcnow()
            })
            self.memories[memory_id] = updated
            self.embeddings[memory_id] = list(embedding)
            self._append_history(memory_id, record.content, content, MemoryEvent.UPDATE)
            return updated.model_copy()

    async def delete(self, memory_id: str) -> bool:
        async with self._lock:
            record = self.memories.pop(memory_id, None)
            if record is None:
                return False
            self.embeddings.pop(memory_id, None)
            self._append_history(memory_id, record.content, None, MemoryEvent.DELETE)
            return True

    async def delete_all(self, user_id: str) -> List[str]:
        async with self._lock:
            deleted = [mid for mid, r in self.memories.items() if r.user_id == user_id]
            for memory_id in deleted:
                record = self.memories.pop(memory_id)
                self.embeddings.pop(memory_id, None)
                self._append_history(memory_id, record.content, None, MemoryEvent.DELETE)
            return deleted

    async def history(self, memory_id: str) -> List[MemoryHistoryEntry]:
        async with self._lock:
            return [entry.model_copy() for entry in self.history_log.get(memory_id, [])]

    def _append_history(
        self,
        memory_id: str,
        previous: Optional[str],
        new: Optional[str],
        event: MemoryEvent
    ):
        self.history_log.setdefault(memory_id, []).append(MemoryHistoryEntry(
            memory_id=memory_id,
            previous_content=previous,
            new_content=new,
            event=event
        ))
