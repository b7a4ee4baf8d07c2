"""Single-producer, single-consumer channel between the orchestrator and a client stream."""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import aclosing

from .models import StreamEvent
from .observability import BackgroundTasks

logger = logging.getLogger(__name__)

_END = object()


class AskStream:
    """Pumps orchestrator events into a queue from a task owned by the background registry.

    The producer does not depend on the consumer: when the client goes away the
    transport either cancels it or leaves it to finish (so the answer still gets
    cached). End of channel is the terminal signal.
    """

    def __init__(self, events: AsyncIterator[StreamEvent], background: BackgroundTasks):
        self._events = events
        self._background = background
        self._queue: asyncio.Queue = asyncio.Queue()
        self._producer: asyncio.Task | None = None
        self._finished = False
        self._detached = False

    @property
    def finished(self) -> bool:
        """True once the consumer has received the end of the channel."""
        return self._finished

    def start(self) -> None:
        if self._producer is None:
            self._producer = self._background.spawn(self._pump(), "stream ask events")

    async def _pump(self) -> None:
        try:
            async with aclosing(self._events) as events:
                async for event in events:
                    if not self._detached:
                        self._queue.put_nowait(event)
        except Exception:
            # Headers are already sent; ending the stream is the only signal left.
            logger.exception("Ask stream failed")
        finally:
            self._queue.put_nowait(_END)

    async def next(self, timeout: float | None = None) -> StreamEvent | None:
        """Next event, or None at end of channel.

        Raises:
            TimeoutError: If nothing arrives within `timeout` seconds.
        """
        self.start()
        if self._finished:
            return None
        item = await asyncio.wait_for(self._queue.get(), timeout=timeout)
        if item is _END:
            self._finished = True
            return None
        return item

    def detach(self) -> None:
        """Stop buffering events; the producer keeps running to completion."""
        self._detached = True
        while not self._queue.empty():
            self._queue.get_nowait()

    def cancel(self) -> None:
        """Stop the producer; in-flight search and model calls are cancelled."""
        if self._producer is not None and not self._producer.done():
            self._producer.cancel()

    async def __aiter__(self) -> AsyncIterator[StreamEvent]:
        while (event := await self.next()) is not None:
            yield event
