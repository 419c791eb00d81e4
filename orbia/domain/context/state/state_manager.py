from typing import Awaitable, Callable, Optional, TypeVar
import asyncio
import time
import uuid
import weakref
from datetime import datetime, timedelta
import structlog

from orbia.domain.errors import StoreTimeoutError, ThreadConflictError, OrbiaError
from orbia.domain.models.agent_state import Checkpoint, Thread
from .checkpoint_store import CheckpointStore

logger = structlog.get_logger(__name__)

T = TypeVar("T")

DEFAULT_CHECKPOINT_TTL = timedelta(hours=24)


def generate_thread_id(user_id: str) -> str:
    return f"thread_{user_id}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


class ThreadManager:
    """Maps users to their single thread and persists the thread's current checkpoint"""

    def __init__(
        self,
        store: CheckpointStore,
        ttl: timedelta = DEFAULT_CHECKPOINT_TTL,
        clock: Callable[[], datetime] = datetime.utcnow,
        timeout: float = 10.0,
        max_create_attempts: int = 3
    ):
        self.store = store
        self.ttl = ttl
        self.clock = clock
        self.timeout = timeout
        self.max_create_attempts = max_create_attempts
        self._user_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()
        self._thread_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    async def get_or_create_thread(self, user_id: str) -> str:
        """Return the user's thread id, creating the thread on first use"""

        async with self._lock_for(self._user_locks, user_id):
            for attempt in range(1, self.max_create_attempts + 1):
                existing = await self._call(self.store.get_thread_by_user(user_id), "get_thread_by_user")
                if existing:
                    return existing.thread_id

                now = self.clock()
                thread = Thread(
                    thread_id=generate_thread_id(user_id),
                    user_id=user_id,
                    created_at=now,
                    last_accessed_at=now
                )
                try:
                    created = await self._call(self.store.create_thread(thread), "create_thread")
                except ThreadConflictError:
                    # Another process won the race; re-read the winner
                    logger.info("Thread creation conflict", user_id=user_id, attempt=attempt)
                    continue

                logger.info("Created thread", user_id=user_id, thread_id=created.thread_id)
                return created.thread_id

        raise OrbiaError(f"Could not resolve thread for user {user_id}")

    async def get_thread(self, thread_id: str) -> Optional[Thread]:
        return await self._call(self.store.get_thread(thread_id), "get_thread")

    async def touch(self, thread_id: str) -> None:
        """Record last access on the thread"""
        await self._call(self.store.touch_thread(thread_id, self.clock()), "touch_thread")

    async def load_checkpoint(self, thread_id: str) -> Optional[Checkpoint]:
        """Current checkpoint, or None for new and expired threads"""

        checkpoint = await self._call(self.store.get_checkpoint(thread_id), "get_checkpoint")
        if checkpoint is None:
            return None

        now = self.clock()
        if checkpoint.is_expired(now):
            await self._call(self.store.delete_checkpoint_if_expired(thread_id, now), "evict_checkpoint")
            logger.info("Evicted expired checkpoint", thread_id=thread_id, version=checkpoint.version)
            return None

        return checkpoint

    async def save_checkpoint(
        self,
        thread_id: str,
        checkpoint: Checkpoint,
        expected_version: Optional[int]
    ) -> Checkpoint:
        """Replace the current checkpoint and restart its TTL window.

        Raises CheckpointConflictError when the live version differs from expected_version.
        """

        now = self.clock()
        checkpoint = checkpoint.model_copy(update={"thread_id": thread_id})
        saved = await self._call(
            self.store.put_checkpoint(checkpoint, expected_version, now, now + self.ttl),
            "put_checkpoint"
        )
        logger.debug("Saved checkpoint", thread_id=thread_id, version=saved.version)
        return saved

    async def sweep_expired(self) -> int:
        """Evict all expired checkpoints; threads are kept"""

        count = await self._call(self.store.delete_expired(self.clock()), "delete_expired")
        if count:
            logger.info("Swept expired checkpoints", count=count)
        return count

    async def run_sweeper(self, interval_seconds: float):
        """Periodic eviction loop, started by the process entry point"""

        while True:
            try:
                await self.sweep_expired()
            except OrbiaError as e:
                logger.error("Checkpoint sweep error", error=str(e))
            await asyncio.sleep(interval_seconds)

    def thread_lock(self, thread_id: str) -> asyncio.Lock:
        """Lock serializing executor runs on one thread within this process"""
        return self._lock_for(self._thread_locks, thread_id)

    @staticmethod
    def _lock_for(locks: "weakref.WeakValueDictionary[str, asyncio.Lock]", key: str) -> asyncio.Lock:
        lock = locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            locks[key] = lock
        return lock

    async def _call(self, awaitable: Awaitable[T], operation: str) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error("Checkpoint store timeout", operation=operation, timeout=self.timeout)
            raise StoreTimeoutError(f"Checkpoint store operation '{operation}' timed out")
