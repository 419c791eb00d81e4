"""
Response delivery for agent invocations.

One contract, two modes, chosen once per invocation:

- ``BufferedChannel`` collects fragments for a single synchronous response.
- ``StreamingChannel`` hands fragments to a consumer as they are produced.

The producer calls ``emit`` for every fragment and ``complete`` only after the
checkpoint has been saved, so a consumer that sees the end of the stream knows
the turn is durable.
"""

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Awaitable, List
import asyncio

import structlog

from orbia.domain.errors import OrbiaError

logger = structlog.get_logger(__name__)


class ResponseChannel(ABC):
    """Destination for response fragments"""

    streaming: bool = False

    @abstractmethod
    async def emit(self, fragment: str) -> None:
        pass

    async def complete(self) -> None:
        pass

    async def fail(self, error: OrbiaError) -> None:
        pass


class BufferedChannel(ResponseChannel):
    """Synchronous mode: fragments are accumulated and returned at once"""

    def __init__(self):
        self.fragments: List[str] = []

    async def emit(self, fragment: str) -> None:
        if fragment:
            self.fragments.append(fragment)

    @property
    def text(self) -> str:
        return "".join(self.fragments)


class _Done:
    pass


class _Failure:
    def __init__(self, error: OrbiaError):
        self.error = error


_DONE = _Done()


class StreamingChannel(ResponseChannel):
    """Streaming mode: a bounded queue between the producer task and the consumer.

    With ``maxsize=1`` the producer is at most one fragment ahead of the
    consumer, so a consumer that stops reading stops the producer.
    """

    streaming = True

    def __init__(self, maxsize: int = 1):
        self.queue: "asyncio.Queue[object]" = asyncio.Queue(maxsize=maxsize)
        self.emitted = 0

    async def emit(self, fragment: str) -> None:
        if not fragment:
            return
        await self.queue.put(fragment)
        self.emitted += 1

    async def complete(self) -> None:
        await self.queue.put(_DONE)

    async def fail(self, error: OrbiaError) -> None:
        await self.queue.put(_Failure(error))

    async def relay(self, producer: Awaitable[Any]) -> AsyncIterator[str]:
        """Run the producer and yield its fragments until completion.

        A producer failure is re-raised to the consumer. Closing or cancelling
        this iterator before completion cancels the producer.
        """

        task = asyncio.ensure_future(producer)
        try:
            while True:
                item = await self.queue.get()
                if item is _DONE:
                    await task
                    return
                if isinstance(item, _Failure):
                    await task
                    raise item.error
                yield item
        finally:
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    logger.info("Streaming aborted by caller", fragments_emitted=self.emitted)
