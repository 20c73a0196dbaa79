"""
Caller sinks: where the orchestrator pushes cumulative content while a turn runs.

Each value sent is the *whole* visible message so far (replace, don't append).  Closing a sink
from the consumer side is how a transport signals that nobody is listening any more.
"""

import asyncio
import inspect
from typing import (
    AsyncIterator,
    Awaitable,
    Callable,
    Protocol,
    Union,
    runtime_checkable,
)

_EOF = object()


@runtime_checkable
class ContentSink(Protocol):
    """Push interface accepting cumulative content strings."""

    @property
    def closed(self) -> bool:
        """True once the sink no longer accepts content."""

    async def send(self, content: str) -> None:
        """Deliver the cumulative content."""

    def close(self) -> None:
        """Stop accepting content.  Idempotent."""


class QueueSink:
    """
    Channel between the orchestrator (writer) and a transport (reader).

    The transport drains it with ``async for chunk in sink``; iteration ends after
    :meth:`close`, from either side.
    """

    def __init__(self) -> None:
        self._queue: "asyncio.Queue[object]" = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, content: str) -> None:
        if self._closed:
            return
        await self._queue.put(content)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_EOF)

    async def __aiter__(self) -> AsyncIterator[str]:
        while True:
            item = await self._queue.get()
            if item is _EOF:
                return
            yield item  # type: ignore[misc]


class CallbackSink:
    """Forward each chunk to a plain callable (sync or async)."""

    def __init__(self, callback: Callable[[str], Union[None, Awaitable[None]]]) -> None:
        self._callback = callback
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, content: str) -> None:
        if self._closed:
            return
        result = self._callback(content)
        if inspect.isawaitable(result):
            await result

    def close(self) -> None:
        self._closed = True
