"""Shared fakes for the test-suite: a scripted model back-end and a recording sink."""

from typing import (
    Any,
    AsyncIterator,
    Dict,
    List,
    Sequence,
)

import pytest

from concierge.agent.model_interface import BaseChatModel
from concierge.core.schema import (
    ChatMessage,
    StreamEvent,
    ToolCallDelta,
)
from concierge.tools import ToolRegistry


def text(content: str) -> StreamEvent:
    """Stream event carrying a content delta."""
    return StreamEvent(content=content)


def call(index: int, arguments: str = "", *, id: str | None = None, name: str | None = None):
    """Stream event carrying one tool-call delta."""
    return StreamEvent(
        tool_calls=[ToolCallDelta(index=index, id=id, name=name, arguments=arguments)]
    )


class ScriptedModel(BaseChatModel):
    """
    Replays one scripted list of events per sub-turn.

    Once the script runs out the last entry is repeated, so a script whose last entry asks for a
    tool keeps asking forever.
    """

    def __init__(self, turns: List[List[StreamEvent]], fail_on: int | None = None) -> None:
        self.turns = turns
        self.fail_on = fail_on
        self.requests: List[List[ChatMessage]] = []
        self.tools: List[List[Dict[str, Any]]] = []
        self.closed_streams = 0

    async def stream(
        self, messages: Sequence[ChatMessage], tools: Sequence[Dict[str, Any]]
    ) -> AsyncIterator[StreamEvent]:
        self.requests.append(list(messages))
        self.tools.append(list(tools))
        turn = self.turns[min(len(self.requests), len(self.turns)) - 1]
        try:
            for i, event in enumerate(turn):
                if self.fail_on is not None and i == self.fail_on:
                    raise ConnectionError("model connection dropped")
                yield event
        finally:
            self.closed_streams += 1

    def tool_names(self, request_index: int) -> List[str]:
        """Names of the tools advertised on the given request."""
        return [spec["function"]["name"] for spec in self.tools[request_index]]


class RecordingSink:
    """Collects every chunk; optionally closes itself after *close_after* chunks."""

    def __init__(self, close_after: int | None = None) -> None:
        self.chunks: List[str] = []
        self.close_after = close_after
        self.close_calls = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, content: str) -> None:
        assert not self._closed, "content sent to a closed sink"
        self.chunks.append(content)
        if self.close_after is not None and len(self.chunks) >= self.close_after:
            self._closed = True

    def close(self) -> None:
        self.close_calls += 1
        self._closed = True


@pytest.fixture
def shop_registry() -> ToolRegistry:
    """Registry with a fixed three-item catalog and an echoing lookup tool."""
    registry = ToolRegistry("shop")

    @registry.tool("fetch_products", session_key="product_deals")
    def _fetch_products() -> Dict[str, Any]:
        """Return the fixed catalog."""
        return {"products": [{"id": 1}, {"id": 2}, {"id": 3}]}

    @registry.tool("lookup")
    async def _lookup(id: str) -> Dict[str, Any]:  # pylint: disable=redefined-builtin
        """Echo the id back."""
        return {"found": id}

    return registry
