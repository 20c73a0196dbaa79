"""
Exception hierarchy for Concierge.

Every failure that can cross a component boundary carries a code from
:class:`~concierge.core.protocol.ErrorCode` so the HTTP layer can report it without guessing.
"""

from typing import Any

from concierge.core.protocol import (
    ErrorCode,
    JsonRpcError,
)


class ConciergeError(RuntimeError):
    """Base class for failures that map onto the JSON-RPC error taxonomy."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str, *, data: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.data = data

    def to_error(self) -> JsonRpcError:
        """Return the JSON-RPC error object describing this failure."""
        return JsonRpcError(code=int(self.code), message=self.message, data=self.data)


class EnvelopeError(ConciergeError):
    """Raised when a payload is not a well-formed JSON-RPC envelope."""

    code = ErrorCode.INVALID_REQUEST


# ---------------------------------------------------------------------------
# Tool execution
# ---------------------------------------------------------------------------
class ToolExecutionError(ConciergeError):
    """Raised by a tool executor when it cannot produce a result."""


class InvalidParamsError(ToolExecutionError):
    """Raised by a tool executor when required arguments are missing or malformed."""

    code = ErrorCode.INVALID_PARAMS


class DuplicateToolError(ValueError):
    """Raised when a tool name is registered twice on a registry that forbids overrides."""


class RegistrySealedError(RuntimeError):
    """Raised when registering a tool after the registry has been sealed."""


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------
class ToolNotFoundError(ConciergeError):
    """No registry in the router chain accepted the call."""

    code = ErrorCode.TOOL_NOT_FOUND

    def __init__(self, tool: str, *, data: Any = None) -> None:
        super().__init__(f"Tool {tool} not found in any registry", data=data)
        self.tool = tool


class BatchNotHandledError(ToolNotFoundError):
    """No single registry could satisfy a whole batch."""

    def __init__(self, tools: list[str]) -> None:
        super().__init__(", ".join(tools), data={"tools": tools})
        self.message = "No registry could handle the batch request"
        self.args = (self.message,)
        self.tools = tools


# ---------------------------------------------------------------------------
# Turn failures (terminal for the current conversational turn)
# ---------------------------------------------------------------------------
class TurnError(ConciergeError):
    """Base class for failures that move a turn to the FAILED state."""


class RecursionLimitExceeded(TurnError):
    """The model kept requesting tools past the iteration bound."""

    code = ErrorCode.RECURSION_LIMIT_EXCEEDED


class ArgumentParseError(TurnError):
    """Accumulated tool-call argument text is not a well-formed JSON object."""

    code = ErrorCode.ARGUMENT_PARSE_ERROR


class ModelStreamError(TurnError):
    """The model stream failed (connection drop, malformed framing, back-end error)."""

    code = ErrorCode.SERVER_ERROR
