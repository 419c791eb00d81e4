from abc import ABC, abstractmethod
from typing import Dict, Optional
import asyncio
from datetime import datetime

from orbia.domain.errors import CheckpointConflictError, ThreadConflictError
from orbia.domain.models.agent_state import Checkpoint, Thread


class CheckpointStore(ABC):
    """Storage contract for threads and their current checkpoint"""

    @abstractmethod
    async def get_thread_by_user(self, user_id: str) -> Optional[Thread]:
        pass

    @abstractmethod
    async def get_thread(self, thread_id: str) -> Optional[Thread]:
        pass

    @abstractmethod
    async def create_thread(self, thread: Thread) -> Thread:
        """Insert a thread; raises ThreadConflictError if the user already owns one"""
        pass

    @abstractmethod
    async def touch_thread(self, thread_id: str, accessed_at: datetime) -> None:
        pass

    @abstractmethod
    async def get_checkpoint(self, thread_id: str) -> Optional[Checkpoint]:
        """Return the stored checkpoint, expired or not"""
        pass

    @abstractmethod
    async def put_checkpoint(
        self,
        checkpoint: Checkpoint,
        expected_version: Optional[int],
        now: datetime,
        expires_at: datetime
    ) -> Checkpoint:
        """Atomically replace the current checkpoint if its live version matches expected_version.

        An expired checkpoint counts as absent. Raises CheckpointConflictError on mismatch.
        """
        pass

    @abstractmethod
    async def delete_checkpoint_if_expired(self, thread_id: str, now: datetime) -> bool:
        pass

    @abstractmethod
    async def delete_expired(self, now: datetime) -> int:
        pass

    async def close(self) -> None:
        pass


class InMemoryCheckpointStore(CheckpointStore):
    """Process-local store for development and tests; not durable across restarts"""

    def __init__(self):
        self.threads: Dict[str, Thread] = {}
        self.threads_by_user: Dict[str, str] = {}
        self.checkpoints: Dict[str, Checkpoint] = {}
        self._lock = asyncio.Lock()

    async def get_thread_by_user(self, user_id: str) -> Optional[Thread]:
        async with self._lock:
            thread_id = self.threads_by_user.get(user_id)
            return self.threads.get(thread_id) if thread_id else None

    async def get_thread(self, thread_id: str) -> Optional[Thread]:
        async with self._lock:
            return self.threads.get(thread_id)

    async def create_thread(self, thread: Thread) -> Thread:
        async with self._lock:
            if thread.user_id in self.threads_by_user:
                raise ThreadConflictError(f"Thread already exists for user {thread.user_id}")
            self.threads[thread.thread_id] = thread
            self.threads_by_user[thread.user_id] = thread.thread_id
            return thread

    async def touch_thread(self, thread_id: str, accessed_at: datetime) -> None:
        async with self._lock:
            thread = self.threads.get(thread_id)
            if thread:
                self.threads[thread_id] = thread.model_copy(update={"last_accessed_at": accessed_at})

    async def get_checkpoint(self, thread_id: str) -> Optional[Checkpoint]:
        async with self._lock:
            checkpoint = self.checkpoints.get(thread_id)
            return checkpoint.model_copy(deep=True) if checkpoint else None

    async def put_checkpoint(
        self,
        checkpoint: Checkpoint,
        expected_version: Optional[int],
        now: datetime,
        expires_at: datetime
    ) -> Checkpoint:
        async with self._lock:
            current = self.checkpoints.get(checkpoint.thread_id)
            if current is not None and current.is_expired(now):
                current = None
            current_version = current.version if current else None

            if current_version != expected_version:
                raise CheckpointConflictError(checkpoint.thread_id, expected_version, current_version)

            stored = Checkpoint(
                thread_id=checkpoint.thread_id,
                channel_values=checkpoint.model_copy(deep=True).channel_values,
                version=(current_version or 0) + 1,
                updated_at=now,
                expires_at=expires_at
            )
            self.checkpoints[checkpoint.thread_id] = stored
            return stored.model_copy(deep=True)

    async def delete_checkpoint_if_expired(self, thread_id: str, now: datetime) -> bool:
        async with self._lock:
            checkpoint = self.checkpoints.get(thread_id)
            if checkpoint and checkpoint.is_expired(now):
                del self.checkpoints[thread_id]
                return True
            return False

    async def delete_expired(self, now: datetime) -> int:
        async with self._lock:
            expired = [
                thread_id for thread_id, checkpoint in self.checkpoints.items()
                if checkpoint.is_expired(now)
            ]
            for thread_id in expired:
                del self.checkpoints[thread_id]
            return len(expired)
