"""
Tool registry for Concierge.

A :class:`ToolRegistry` owns a mapping from tool name to :class:`ToolDescriptor` and executes
JSON-RPC requests against it.  Tools are added either as explicit descriptors or with the
:meth:`ToolRegistry.tool` decorator:

    products = ToolRegistry("products")

    @products.tool("fetch_products")
    def fetch_products() -> dict:
        ...

Registration happens at import time; the registry is then sealed and is read-only for the
lifetime of the process.
"""

import asyncio
import inspect
import logging
from dataclasses import (
    dataclass,
    field,
)
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Sequence,
    Union,
    get_type_hints,
)

from concierge.core.errors import (
    DuplicateToolError,
    InvalidParamsError,
    RegistrySealedError,
)
from concierge.core.protocol import (
    JSONRPC_VERSION,
    ErrorCode,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    make_error,
    make_success,
)

logger = logging.getLogger(__name__)

ToolExecutor = Callable[[Mapping[str, Any]], Union[Any, Awaitable[Any]]]
"""Maps an argument mapping to a result; may be a plain function or a coroutine function."""

_JSON_TYPES: Dict[Any, str] = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
    list: "array",
    dict: "object",
}


@dataclass(frozen=True)
class ToolDescriptor:
    """A named, schema-described tool.  Immutable once created."""

    name: str
    description: str
    executor: ToolExecutor
    parameters: Mapping[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )
    # Out-of-band session slot the tool's result fills (e.g. "visitor_data")
    session_key: str | None = None

    def summary(self) -> Dict[str, Any]:
        """Public view used by catalog listings."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": dict(self.parameters),
        }

    def to_function_spec(self) -> Dict[str, Any]:
        """Shape expected by function-calling chat APIs."""
        return {"type": "function", "function": self.summary()}


def _json_type(annotation: Any) -> str:
    return _JSON_TYPES.get(getattr(annotation, "__origin__", annotation), "string")


def schema_from_signature(fn: Callable) -> Dict[str, Any]:
    """Derive a JSON-schema ``object`` description from *fn*'s signature and type hints."""
    sig = inspect.signature(fn)
    type_hints = get_type_hints(fn)
    properties: Dict[str, Any] = {}
    required: List[str] = []
    for param_name, param in sig.parameters.items():
        if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            continue
        properties[param_name] = {"type": _json_type(type_hints.get(param_name, str))}
        if param.default is inspect.Parameter.empty:
            required.append(param_name)
    schema: Dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


def _keyword_executor(name: str, fn: Callable) -> ToolExecutor:
    """Adapt a function taking keyword arguments to the mapping-in executor contract."""
    sig = inspect.signature(fn)

    async def execute(args: Mapping[str, Any]) -> Any:
        if not isinstance(args, Mapping):
            raise InvalidParamsError(
                f"Invalid arguments for tool '{name}': expected an object",
                data={"received": type(args).__name__},
            )
        try:
            bound = sig.bind(**args)
        except TypeError as exc:
            # Argument mismatch, give the caller a clean exception.
            raise InvalidParamsError(f"Invalid arguments for tool '{name}': {exc}") from exc
        result = fn(*bound.args, **bound.kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result

    return execute


class ToolRegistry:
    """Holds named tools and dispatches single JSON-RPC requests to them."""

    def __init__(self, name: str, description: str = "", *, allow_override: bool = True) -> None:
        self.name = name
        self.description = description
        self.allow_override = allow_override
        self._tools: Dict[str, ToolDescriptor] = {}
        self._sealed = False

    def __repr__(self) -> str:
        return f"ToolRegistry(name={self.name!r}, tools={list(self._tools)})"

    # -----------------------------------------------------------------------
    # Registration
    # -----------------------------------------------------------------------
    @property
    def sealed(self) -> bool:
        """True once :meth:`seal` has been called."""
        return self._sealed

    def seal(self) -> None:
        """Freeze the registry.  Lookups are safe without locking from here on."""
        self._sealed = True

    def register(self, descriptor: ToolDescriptor) -> None:
        """
        Add *descriptor* under its name.

        A repeated name replaces the previous descriptor in place (its catalog position is kept)
        unless the registry was built with ``allow_override=False``.

        Raises
        ------
        RegistrySealedError
            If the registry has been sealed.
        DuplicateToolError
            If the name is taken and overrides are not allowed.
        """
        if self._sealed:
            raise RegistrySealedError(
                f"Registry '{self.name}' is sealed; cannot register '{descriptor.name}'."
            )
        if descriptor.name in self._tools:
            if not self.allow_override:
                raise DuplicateToolError(
                    f"Tool '{descriptor.name}' is already registered in '{self.name}'."
                )
            logger.warning("Replacing tool '%s' in registry '%s'", descriptor.name, self.name)
        else:
            logger.debug("Registering tool '%s' in registry '%s'", descriptor.name, self.name)
        self._tools[descriptor.name] = descriptor

    def tool(
        self,
        name: str | None = None,
        *,
        description: str | None = None,
        parameters: Mapping[str, Any] | None = None,
        session_key: str | None = None,
    ) -> Callable:
        """
        Register a plain function as a tool.

        The function is called with the request params as keyword arguments and may be a
        coroutine function.  Missing metadata is derived from the function:

        * *name* defaults to the function name,
        * *description* defaults to the docstring,
        * *parameters* defaults to a schema built from the signature.

        The decorated function is returned unchanged so it stays directly callable.
        """

        def wrapper(fn: Callable) -> Callable:
            tool_name = name or fn.__name__
            self.register(
                ToolDescriptor(
                    name=tool_name,
                    description=description or inspect.getdoc(fn) or "",
                    executor=_keyword_executor(tool_name, fn),
                    parameters=parameters or schema_from_signature(fn),
                    session_key=session_key,
                )
            )
            return fn

        return wrapper

    # -----------------------------------------------------------------------
    # Lookup
    # -----------------------------------------------------------------------
    def list_tools(self) -> List[ToolDescriptor]:
        """All descriptors in registration order."""
        return list(self._tools.values())

    def get(self, name: str) -> ToolDescriptor | None:
        """Return the descriptor registered under *name*, if any."""
        return self._tools.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    # -----------------------------------------------------------------------
    # Dispatch
    # -----------------------------------------------------------------------
    async def _execute(self, descriptor: ToolDescriptor, params: Any) -> Any:
        result = descriptor.executor(params if params is not None else {})
        if inspect.isawaitable(result):
            result = await result
        return result

    async def handle(self, request: JsonRpcRequest) -> JsonRpcResponse:
        """
        Execute one request and wrap the outcome in a response.

        Executor failures are always converted to error responses; this method never raises.
        """
        if request.jsonrpc != JSONRPC_VERSION:
            return make_error(request.id, ErrorCode.INVALID_REQUEST, "Invalid JSON-RPC version")

        descriptor = self._tools.get(request.method)
        if descriptor is None:
            return make_error(
                request.id,
                ErrorCode.METHOD_NOT_FOUND,
                f"Method {request.method} not found",
                data={"method": request.method},
            )

        try:
            logger.debug(
                "Registry '%s' executing '%s' with params=%s",
                self.name,
                request.method,
                request.params,
            )
            result = await self._execute(descriptor, request.params)
        except InvalidParamsError as exc:
            logger.info("Invalid params for tool '%s': %s", request.method, exc)
            return make_error(request.id, ErrorCode.INVALID_PARAMS, str(exc), data=exc.data)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unhandled error in tool '%s'", request.method)
            return make_error(
                request.id, ErrorCode.INTERNAL_ERROR, "Error executing tool", data=str(exc)
            )
        return make_success(request.id, result)

    async def handle_batch(self, requests: Sequence[JsonRpcRequest]) -> List[JsonRpcResponse]:
        """Handle every request independently; responses are returned in request order."""
        return list(await asyncio.gather(*(self.handle(request) for request in requests)))

    async def notify(self, notification: JsonRpcNotification) -> None:
        """Run a notification.  Nothing is returned; failures are only logged."""
        descriptor = self._tools.get(notification.method)
        if descriptor is None:
            logger.debug("Ignoring notification for unknown tool '%s'", notification.method)
            return
        try:
            await self._execute(descriptor, notification.params)
        except Exception:  # noqa: BLE001
            logger.exception("Notification for tool '%s' failed", notification.method)
