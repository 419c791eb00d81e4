from datetime import datetime
from typing import List, Optional

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from orbia.domain.context.memory.vector_memory_store import SemanticMemoryStore, cosine_similarity
from orbia.domain.models.memory import (
    MemoryEvent, MemoryHistoryEntry, MemoryRecord, ScoredMemory, content_hash
)
from .database import Database
from .models import MemoryHistoryRow, MemoryRow

logger = structlog.get_logger(__name__)


class SqlSemanticMemoryStore(SemanticMemoryStore):
    """Memory records with JSON-encoded embeddings.

    Similarity is computed in process over the owning user's rows; the user
    filter is applied in SQL before any vector is read.
    """

    def __init__(self, database: Database):
        self.database = database

    async def insert(self, record: MemoryRecord, embedding: List[float]) -> MemoryRecord:
        async with self.database.session_factory() as session:
            session.add(MemoryRow(
                id=record.id,
                user_id=record.user_id,
                content=record.content,
                hash=record.hash,
                metadata_=record.metadata,
                embedding=list(embedding),
                created_at=record.created_at,
                updated_at=record.updated_at
            ))
            self._append_history(session, record.id, None, record.content, MemoryEvent.ADD)
            await session.commit()
        return record

    async def get(self, memory_id: str) -> Optional[MemoryRecord]:
        async with self.database.session_factory() as session:
            row = await session.get(MemoryRow, memory_id)
            return self._to_record(row) if row else None

    async def find_by_hash(self, user_id: str, hash_value: str) -> Optional[MemoryRecord]:
        async with self.database.session_factory() as session:
            row = await session.scalar(
                select(MemoryRow).where(MemoryRow.user_id == user_id, MemoryRow.hash == hash_value).limit(1)
            )
            return self._to_record(row) if row else None

    async def list_for_user(self, user_id: str, limit: int, offset: int = 0) -> List[MemoryRecord]:
        async with self.database.session_factory() as session:
            rows = await session.scalars(
                select(MemoryRow)
                .where(MemoryRow.user_id == user_id)
                .order_by(MemoryRow.created_at.desc(), MemoryRow.id)
                .limit(limit)
                .offset(offset)
            )
            return [self._to_record(row) for row in rows]

    async def search(
        self,
        user_id: str,
        embedding: List[float],
        limit: int,
        threshold: Optional[float] = None
    ) -> List[ScoredMemory]:
        async with self.database.session_factory() as session:
            rows = await session.scalars(select(MemoryRow).where(MemoryRow.user_id == user_id))
            hits = []
            for row in rows:
                score = cosine_similarity(embedding, row.embedding or [])
                if threshold is not None and score < threshold:
                    continue
                hits.append(ScoredMemory(record=self._to_record(row), score=score))

        hits.sort(key=lambda hit: hit.score, reverse=True)
        return hits[:limit]

    async def update(self, memory_id: str, content: str, embedding: List[float]) -> Optional[MemoryRecord]:
        async with self.database.session_factory() as session:
            row = await session.get(MemoryRow, memory_id, with_for_update=True)
            if row is None:
                return None
            previous = row.content
            row.content = content
            row.hash = content_hash(content)
            row.embedding = list(embedding)
            row.updated_at = datetime.utcnow()
            self._append_history(session, memory_id, previous, content, MemoryEvent.UPDATE)
            await session.commit()
            return self._to_record(row)

    async def delete(self, memory_id: str) -> bool:
        async with self.database.session_factory() as session:
            row = await session.get(MemoryRow, memory_id, with_for_update=True)
            if row is None:
                return False
            self._append_history(session, memory_id, row.content, None, MemoryEvent.DELETE)
            await session.delete(row)
            await session.commit()
            return True

    async def delete_all(self, user_id: str) -> List[str]:
        async with self.database.session_factory() as session:
            rows = list(await session.scalars(select(MemoryRow).where(MemoryRow.user_id == user_id)))
            for row in rows:
                self._append_history(session, row.id, row.content, None, MemoryEvent.DELETE)
            await session.execute(delete(MemoryRow).where(MemoryRow.user_id == user_id))
            await session.commit()
            return [row.id for row in rows]

    async def history(self, memory_id: str) -> List[MemoryHistoryEntry]:
        async with self.database.session_factory() as session:
            rows = await session.scalars(
                select(MemoryHistoryRow)
                .where(MemoryHistoryRow.memory_id == memory_id)
                .order_by(MemoryHistoryRow.seq)
            )
            return [
                MemoryHistoryEntry(
                    id=row.id,
                    memory_id=row.memory_id,
                    previous_content=row.previous_content,
                    new_content=row.new_content,
                    event=MemoryEvent(row.event),
                    created_at=row.created_at
                )
                for row in rows
            ]

    @staticmethod
    def _append_history(
        session: AsyncSession,
        memory_id: str,
        previous: Optional[str],
        new: Optional[str],
        event: MemoryEvent
    ):
        entry = MemoryHistoryEntry(memory_id=memory_id, previous_content=previous, new_content=new, event=event)
        session.add(MemoryHistoryRow(
            id=entry.id,
            memory_id=memory_id,
            previous_content=previous,
            new_content=new,
            event=event.value,
            created_at=entry.created_at
        ))

    @staticmethod
    def _to_record(row: MemoryRow) -> MemoryRecord:
        return MemoryRecord(
            id=row.id,
            user_id=row.user_id,
            content=row.content,
            metadata=dict(row.metadata_ or {}),
            hash=row.hash,
            created_at=row.created_at,
            updated_at=row.updated_at
        )
