"""
Tests for the tool router: catalog composition, fallback routing and atomic batches.

Run with:
$ pytest -q
"""

from typing import Any, List, Sequence

import pytest

from concierge.agent.router import ToolRouter
from concierge.core.errors import (
    BatchNotHandledError,
    ToolNotFoundError,
)
from concierge.core.protocol import (
    ErrorCode,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    make_request,
)
from concierge.core.schema import ToolCall
from concierge.tools import (
    ToolDescriptor,
    ToolRegistry,
)


class RecordingRegistry(ToolRegistry):
    """Registry that remembers every request it was asked to handle."""

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self.seen: List[JsonRpcRequest] = []
        self.batches: List[List[JsonRpcRequest]] = []

    async def handle(self, request: JsonRpcRequest) -> JsonRpcResponse:
        self.seen.append(request)
        return await super().handle(request)

    async def handle_batch(self, requests: Sequence[JsonRpcRequest]) -> List[JsonRpcResponse]:
        self.batches.append(list(requests))
        return await super().handle_batch(requests)


class CrashingRegistry(ToolRegistry):
    """Registry whose invocation itself faults."""

    async def handle(self, request: JsonRpcRequest) -> JsonRpcResponse:
        raise ConnectionError("registry offline")

    async def handle_batch(self, requests: Sequence[JsonRpcRequest]) -> List[JsonRpcResponse]:
        raise ConnectionError("registry offline")


def _tool(registry: ToolRegistry, name: str, result: Any) -> None:
    registry.register(ToolDescriptor(name=name, description=name, executor=lambda args: result))


def _failing_tool(registry: ToolRegistry, name: str) -> None:
    def fail(args):
        raise RuntimeError(f"{name} failed")

    registry.register(ToolDescriptor(name=name, description=name, executor=fail))


@pytest.mark.asyncio
async def test_single_registry_returns_catalog(shop_registry) -> None:
    """fetch_products on a one-registry router returns exactly the three items."""
    router = ToolRouter([shop_registry])

    result = await router.call("fetch_products", {})

    assert result == {"products": [{"id": 1}, {"id": 2}, {"id": 3}]}


@pytest.mark.asyncio
async def test_falls_through_to_registry_that_has_the_tool() -> None:
    """The first registry lacks X, the second has it: the second's result is returned."""
    first, second = RecordingRegistry("first"), RecordingRegistry("second")
    _tool(first, "other", "nope")
    _tool(second, "X", {"ok": True})
    router = ToolRouter([first, second])

    assert await router.call("X", {}) == {"ok": True}
    assert [r.method for r in first.seen] == ["X"]
    assert [r.method for r in second.seen] == ["X"]


@pytest.mark.asyncio
async def test_erroring_registry_is_skipped_in_order() -> None:
    """A registry that errors on the tool loses to a later registry that succeeds."""
    a, b, c = RecordingRegistry("a"), RecordingRegistry("b"), RecordingRegistry("c")
    _failing_tool(a, "price")
    _tool(b, "price", "from-b")
    _tool(c, "price", "from-c")
    router = ToolRouter([a, b, c])

    assert await router.call("price") == "from-b"
    assert len(a.seen) == 1 and len(b.seen) == 1
    assert c.seen == []  # short-circuit after the first success


@pytest.mark.asyncio
async def test_faulting_registry_is_skipped() -> None:
    """A registry whose invocation raises is treated like an error response."""
    healthy = ToolRegistry("healthy")
    _tool(healthy, "X", 1)
    router = ToolRouter([CrashingRegistry("down"), healthy])

    assert await router.call("X") == 1


@pytest.mark.asyncio
async def test_exhausted_chain_raises_tool_not_found(shop_registry) -> None:
    """When no registry accepts the call the router names the tool."""
    router = ToolRouter([shop_registry, CrashingRegistry("down")])

    with pytest.raises(ToolNotFoundError) as excinfo:
        await router.call("teleport", {})

    assert excinfo.value.tool == "teleport"
    assert excinfo.value.code == ErrorCode.TOOL_NOT_FOUND
    attempts = excinfo.value.data["attempts"]
    assert [attempt["registry"] for attempt in attempts] == ["shop", "down"]
    assert attempts[0]["code"] == ErrorCode.METHOD_NOT_FOUND


@pytest.mark.asyncio
async def test_request_ids_increase_monotonically() -> None:
    """Each call gets a fresh id from the router's private counter."""
    registry = RecordingRegistry("r")
    _tool(registry, "t", None)
    router = ToolRouter([registry])

    await router.call("t")
    await router.call("t")
    await router.call_batch([ToolCall(name="t"), ToolCall(name="t")])

    ids = [r.id for r in registry.seen]
    assert ids == sorted(ids) and len(set(ids)) == len(ids)
    assert ids[0] == 1


def test_catalog_concatenates_without_dedup() -> None:
    """Registry order, then registration order; duplicates stay."""
    a, b = ToolRegistry("a"), ToolRegistry("b")
    _tool(a, "fetch_products", 1)
    _tool(a, "lookup", 2)
    _tool(b, "fetch_products", 3)
    _tool(b, "fetch_visitor_data", 4)
    router = ToolRouter([a, b])

    assert [d.name for d in router.catalog()] == [
        "fetch_products",
        "lookup",
        "fetch_products",
        "fetch_visitor_data",
    ]
    assert router.find("fetch_products") is a.get("fetch_products")
    assert router.find("missing") is None


@pytest.mark.asyncio
async def test_batch_is_all_or_nothing_per_registry() -> None:
    """Partial success on the first registry is discarded; the full batch goes to the next."""
    partial, complete = RecordingRegistry("partial"), RecordingRegistry("complete")
    _tool(partial, "a", "partial-a")
    _tool(partial, "b", "partial-b")
    _tool(complete, "a", "complete-a")
    _tool(complete, "b", "complete-b")
    _tool(complete, "c", "complete-c")
    router = ToolRouter([partial, complete])
    calls = [ToolCall(name="a"), ToolCall(name="b"), ToolCall(name="c")]

    results = await router.call_batch(calls)

    assert results == ["complete-a", "complete-b", "complete-c"]
    # The identical batch (same ids) was offered to both registries
    assert [r.id for r in partial.batches[0]] == [r.id for r in complete.batches[0]]
    assert len(complete.batches[0]) == 3


@pytest.mark.asyncio
async def test_batch_fails_when_no_registry_covers_it() -> None:
    """Tools spread across registries cannot be merged into one batch."""
    a, b = ToolRegistry("a"), ToolRegistry("b")
    _tool(a, "x", 1)
    _tool(b, "y", 2)
    router = ToolRouter([CrashingRegistry("down"), a, b])

    with pytest.raises(BatchNotHandledError) as excinfo:
        await router.call_batch([ToolCall(name="x"), ToolCall(name="y")])

    assert isinstance(excinfo.value, ToolNotFoundError)
    assert excinfo.value.tools == ["x", "y"]


@pytest.mark.asyncio
async def test_dispatch_keeps_caller_id() -> None:
    """Envelope-level dispatch answers with the caller's id, success or not."""
    registry = ToolRegistry("r")
    _tool(registry, "t", "ok")
    router = ToolRouter([registry])

    found = await router.dispatch(make_request("t", {}, "client-7"))
    missing = await router.dispatch(make_request("u", {}, "client-8"))

    assert found.id == "client-7" and found.result == "ok"
    assert missing.id == "client-8"
    assert missing.error.code == ErrorCode.TOOL_NOT_FOUND


@pytest.mark.asyncio
async def test_notify_reaches_first_registry_with_tool() -> None:
    """Notifications go to the first registry that has the tool, and only there."""
    hits = []
    a, b = ToolRegistry("a"), ToolRegistry("b")
    b.register(ToolDescriptor(name="ping", description="", executor=lambda args: hits.append("b")))
    a.register(ToolDescriptor(name="other", description="", executor=lambda args: hits.append("a")))
    router = ToolRouter([a, b])

    await router.notify(JsonRpcNotification(method="ping"))
    await router.notify(JsonRpcNotification(method="nobody"))

    assert hits == ["b"]
