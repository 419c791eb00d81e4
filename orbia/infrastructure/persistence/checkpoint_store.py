from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError

from orbia.domain.context.state.checkpoint_store import CheckpointStore
from orbia.domain.errors import CheckpointConflictError, ThreadConflictError
from orbia.domain.models.agent_state import Checkpoint, Thread
from .database import Database
from .models import CheckpointRow, UserThreadRow

logger = structlog.get_logger(__name__)


class SqlCheckpointStore(CheckpointStore):
    """Durable thread and checkpoint storage.

    Thread uniqueness per user is enforced by the unique index on
    ``user_threads.user_id``. Checkpoint saves are compare-and-swap updates on
    ``checkpoints.version``, so two writers holding the same version cannot
    both succeed.
    """

    def __init__(self, database: Database):
        self.database = database

    async def get_thread_by_user(self, user_id: str) -> Optional[Thread]:
        async with self.database.session_factory() as session:
            row = await session.scalar(select(UserThreadRow).where(UserThreadRow.user_id == user_id))
            return self._to_thread(row) if row else None

    async def get_thread(self, thread_id: str) -> Optional[Thread]:
        async with self.database.session_factory() as session:
            row = await session.get(UserThreadRow, thread_id)
            return self._to_thread(row) if row else None

    async def create_thread(self, thread: Thread) -> Thread:
        async with self.database.session_factory() as session:
            session.add(UserThreadRow(
                thread_id=thread.thread_id,
                user_id=thread.user_id,
                created_at=thread.created_at,
                last_accessed_at=thread.last_accessed_at
            ))
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                raise ThreadConflictError(f"Thread already exists for user {thread.user_id}")
        return thread

    async def touch_thread(self, thread_id: str, accessed_at: datetime) -> None:
        async with self.database.session_factory() as session:
            await session.execute(
                update(UserThreadRow)
                .where(UserThreadRow.thread_id == thread_id)
                .values(last_accessed_at=accessed_at)
            )
            await session.commit()

    async def get_checkpoint(self, thread_id: str) -> Optional[Checkpoint]:
        async with self.database.session_factory() as session:
            row = await session.get(CheckpointRow, thread_id)
            return self._to_checkpoint(row) if row else None

    async def put_checkpoint(
        self,
        checkpoint: Checkpoint,
        expected_version: Optional[int],
        now: datetime,
        expires_at: datetime
    ) -> Checkpoint:
        thread_id = checkpoint.thread_id
        async with self.database.session_factory() as session:
            row = await session.get(CheckpointRow, thread_id)
            stored_version = row.version if row else None
            live_version = stored_version if row and row.expires_at > now else None

            if live_version != expected_version:
                raise CheckpointConflictError(thread_id, expected_version, live_version)

            new_version = (live_version or 0) + 1
            values = dict(
                channel_values=checkpoint.channel_values,
                version=new_version,
                updated_at=now,
                expires_at=expires_at
            )

            try:
                if row is None:
                    session.add(CheckpointRow(thread_id=thread_id, **values))
                    await session.commit()
                else:
                    # Detach so the compare-and-swap below is the only write
                    session.expunge(row)
                    result = await session.execute(
                        update(CheckpointRow)
                        .where(CheckpointRow.thread_id == thread_id, CheckpointRow.version == stored_version)
                        .values(**values)
                    )
                    if result.rowcount != 1:
                        await session.rollback()
                        raise CheckpointConflictError(thread_id, expected_version, None)
                    await session.commit()
            except IntegrityError:
                await session.rollback()
                raise CheckpointConflictError(thread_id, expected_version, None)

        return Checkpoint(thread_id=thread_id, **values)

    async def delete_checkpoint_if_expired(self, thread_id: str, now: datetime) -> bool:
        async with self.database.session_factory() as session:
            result = await session.execute(
                delete(CheckpointRow).where(CheckpointRow.thread_id == thread_id, CheckpointRow.expires_at <= now)
            )
            await session.commit()
            return result.rowcount > 0

    async def delete_expired(self, now: datetime) -> int:
        async with self.database.session_factory() as session:
            result = await session.execute(delete(CheckpointRow).where(CheckpointRow.expires_at <= now))
            await session.commit()
            return result.rowcount or 0

    @staticmethod
    def _to_thread(row: UserThreadRow) -> Thread:
        return Thread(
            thread_id=row.thread_id,
            user_id=row.user_id,
            created_at=row.created_at,
            last_accessed_at=row.last_accessed_at
        )

    @staticmethod
    def _to_checkpoint(row: CheckpointRow) -> Checkpoint:
        return Checkpoint(
            thread_id=row.thread_id,
            channel_values=row.channel_values,
            version=row.version,
            updated_at=row.updated_at,
            expires_at=row.expires_at
        )
