"""
JSON-RPC 2.0 envelope shared by tool registries, the router and the HTTP layer.

The models here are pure data shapes; the only behaviour is construction of success/error
responses and decoding a raw mapping into the right envelope type.
"""

from enum import IntEnum
from typing import (
    Any,
    Dict,
    Mapping,
    Optional,
    Union,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    model_validator,
)

JSONRPC_VERSION = "2.0"

RequestId = Union[str, int, None]


class ErrorCode(IntEnum):
    """Error codes used on responses and raised failures.  Never invent ad hoc values."""

    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603
    SERVER_ERROR = -32000
    # Router / orchestrator conditions, inside the implementation-defined server range
    TOOL_NOT_FOUND = -32001
    RECURSION_LIMIT_EXCEEDED = -32002
    ARGUMENT_PARSE_ERROR = -32003


# ---------------------------------------------------------------------------
# Envelope models
# ---------------------------------------------------------------------------
class JsonRpcError(BaseModel):
    """Error object carried by a failed response."""

    code: int
    message: str
    data: Any = None


class JsonRpcRequest(BaseModel):
    """A call that expects a response correlated by *id*."""

    # Not a Literal: registries must be able to reject a wrong version themselves.
    jsonrpc: str = JSONRPC_VERSION
    id: RequestId = None
    method: str
    params: Any = None


class JsonRpcNotification(BaseModel):
    """A call with no correlation id; no response is ever produced."""

    model_config = ConfigDict(extra="forbid")

    jsonrpc: str = JSONRPC_VERSION
    method: str
    params: Any = None


class JsonRpcResponse(BaseModel):
    """
    Outcome of a request.

    Exactly one of ``result`` or ``error`` is present.  ``result=None`` is a legitimate success
    value, so presence is tracked through the set of explicitly provided fields rather than by
    comparing against ``None``.
    """

    jsonrpc: str = JSONRPC_VERSION
    id: RequestId = None
    result: Any = None
    error: Optional[JsonRpcError] = None

    @model_validator(mode="after")
    def _exactly_one_outcome(self) -> "JsonRpcResponse":
        has_result = "result" in self.model_fields_set
        has_error = self.error is not None
        if has_result and has_error:
            raise ValueError("response cannot carry both result and error")
        if not has_result and not has_error:
            raise ValueError("response requires a result or an error")
        return self

    @property
    def ok(self) -> bool:
        """True when this is a success response."""
        return self.error is None

    def to_wire(self) -> Dict[str, Any]:
        """Serialize to a plain dict holding either ``result`` or ``error``, never both."""
        payload: Dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id}
        if self.error is not None:
            payload["error"] = self.error.model_dump(exclude_none=True)
        else:
            payload["result"] = self.result
        return payload


Envelope = Union[JsonRpcRequest, JsonRpcResponse, JsonRpcNotification]


# ---------------------------------------------------------------------------
# Construction helpers
# ---------------------------------------------------------------------------
def make_success(request_id: RequestId, result: Any) -> JsonRpcResponse:
    """Wrap *result* in a success response."""
    return JsonRpcResponse(id=request_id, result=result)


def make_error(
    request_id: RequestId, code: ErrorCode, message: str, data: Any = None
) -> JsonRpcResponse:
    """Build an error response.  *code* must come from :class:`ErrorCode`."""
    if not isinstance(code, ErrorCode):
        raise TypeError(f"error code must be an ErrorCode member, got {code!r}")
    return JsonRpcResponse(
        id=request_id, error=JsonRpcError(code=int(code), message=message, data=data)
    )


def make_request(
    method: str, params: Any = None, request_id: RequestId = None
) -> JsonRpcRequest:
    """Build a request with the current protocol version."""
    return JsonRpcRequest(id=request_id, method=method, params=params)


def parse_envelope(payload: Mapping[str, Any]) -> Envelope:
    """
    Decode a raw mapping into a request, notification or response.

    Raises
    ------
    EnvelopeError
        If *payload* matches none of the envelope shapes.
    """
    # Imported here: errors.py depends on this module for ErrorCode/JsonRpcError.
    from concierge.core.errors import (  # pylint: disable=import-outside-toplevel
        EnvelopeError,
    )

    if not isinstance(payload, Mapping):
        raise EnvelopeError("envelope must be a JSON object")

    try:
        if "method" in payload:
            if "id" in payload:
                return JsonRpcRequest.model_validate(payload)
            return JsonRpcNotification.model_validate(payload)
        if "result" in payload or "error" in payload:
            return JsonRpcResponse.model_validate(payload)
    except ValueError as exc:  # pydantic.ValidationError is a ValueError
        raise EnvelopeError("malformed envelope", data=str(exc)) from exc

    raise EnvelopeError("envelope has neither 'method' nor 'result'/'error'")

