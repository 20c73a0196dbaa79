"""
Tool router: presents an ordered list of registries as one logical tool surface.

Routing is "try the next provider", not multiplexing: a call goes to each registry in declared
order until one answers without an error, and at most one registry's result is returned.  Batches
are all-or-nothing per registry; partial results are never merged across registries.
"""

import itertools
import logging
from typing import (
    Any,
    Dict,
    List,
    Sequence,
)

from concierge.core.errors import (
    BatchNotHandledError,
    ToolNotFoundError,
)
from concierge.core.protocol import (
    ErrorCode,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    make_error,
    make_request,
)
from concierge.core.schema import ToolCall
from concierge.tools import (
    ToolDescriptor,
    ToolRegistry,
)

logger = logging.getLogger(__name__)


class ToolRouter:
    """Routes tool calls across registries, first success wins."""

    def __init__(self, registries: Sequence[ToolRegistry]) -> None:
        self._registries = tuple(registries)
        self._ids = itertools.count(1)

    @property
    def registries(self) -> tuple[ToolRegistry, ...]:
        """Registries in routing order."""
        return self._registries

    def _next_id(self) -> int:
        return next(self._ids)

    # -----------------------------------------------------------------------
    # Discovery
    # -----------------------------------------------------------------------
    def catalog(self) -> List[ToolDescriptor]:
        """Every registry's tools, registry order then registration order.  No de-duplication."""
        return [descriptor for registry in self._registries for descriptor in registry.list_tools()]

    def find(self, name: str) -> ToolDescriptor | None:
        """First catalog entry called *name*."""
        for registry in self._registries:
            descriptor = registry.get(name)
            if descriptor is not None:
                return descriptor
        return None

    # -----------------------------------------------------------------------
    # Envelope-level routing
    # -----------------------------------------------------------------------
    async def dispatch(self, request: JsonRpcRequest) -> JsonRpcResponse:
        """
        Send *request* to each registry in order and return the first success response.

        If every registry errors or fails, the result is a ``TOOL_NOT_FOUND`` error response
        whose data lists each attempt.
        """
        attempts: List[Dict[str, Any]] = []
        for registry in self._registries:
            try:
                response = await registry.handle(request)
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "Registry '%s' failed on '%s': %s", registry.name, request.method, exc
                )
                attempts.append({"registry": registry.name, "error": str(exc)})
                continue
            if response.error is not None:
                logger.debug(
                    "Registry '%s' declined '%s': %s",
                    registry.name,
                    request.method,
                    response.error.message,
                )
                attempts.append(
                    {
                        "registry": registry.name,
                        "code": response.error.code,
                        "message": response.error.message,
                    }
                )
                continue
            return response

        return make_error(
            request.id,
            ErrorCode.TOOL_NOT_FOUND,
            f"Tool {request.method} not found in any registry",
            data={"attempts": attempts},
        )

    async def dispatch_batch(self, requests: Sequence[JsonRpcRequest]) -> List[JsonRpcResponse]:
        """
        Send the whole batch to one registry at a time until one satisfies every request.

        Raises
        ------
        BatchNotHandledError
            If no registry answers the entire batch without an error.
        """
        for registry in self._registries:
            try:
                responses = await registry.handle_batch(requests)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Registry '%s' failed on batch: %s", registry.name, exc)
                continue
            if any(response.error is not None for response in responses):
                logger.debug("Registry '%s' could not satisfy the whole batch", registry.name)
                continue
            return responses

        raise BatchNotHandledError([request.method for request in requests])

    async def notify(self, notification: JsonRpcNotification) -> None:
        """Deliver *notification* to the first registry that has the tool."""
        for registry in self._registries:
            if notification.method in registry:
                await registry.notify(notification)
                return
        logger.debug("No registry has '%s'; notification dropped", notification.method)

    # -----------------------------------------------------------------------
    # Call-level API used by the orchestrator
    # -----------------------------------------------------------------------
    async def call(self, name: str, args: Dict[str, Any] | None = None) -> Any:
        """
        Execute *name* and return its result.

        Raises
        ------
        ToolNotFoundError
            If every registry returned an error or failed.
        """
        request = make_request(name, args if args is not None else {}, self._next_id())
        response = await self.dispatch(request)
        if response.error is not None:
            raise ToolNotFoundError(name, data=response.error.data)
        return response.result

    async def call_batch(self, calls: Sequence[ToolCall]) -> List[Any]:
        """
        Execute *calls* atomically on a single registry and return their results in order.

        Raises
        ------
        BatchNotHandledError
            If no registry satisfies the entire batch.
        """
        requests = [make_request(call.name, call.args, self._next_id()) for call in calls]
        responses = await self.dispatch_batch(requests)
        return [response.result for response in responses]


def build_default_router() -> ToolRouter:
    """Router over the built-in product and visitor-data registries, sealed for serving."""
    # pylint: disable=import-outside-toplevel
    from concierge.tools.moments import moments_registry
    from concierge.tools.products import products_registry

    registries = [products_registry, moments_registry]
    for registry in registries:
        registry.seal()
    return ToolRouter(registries)
