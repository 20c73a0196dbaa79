"""
Schema definitions for caller <-> orchestrator <-> model messages.

These data models serve as the contract between the HTTP layer, the orchestration loop, the model
back-ends and the tool router.  We keep them separate from runtime logic so they can be imported
anywhere without side-effects.
"""

from typing import (
    Any,
    Dict,
    List,
    Literal,
    Optional,
)

from pydantic import (
    BaseModel,
    Field,
)

ChatRole = Literal["user", "assistant", "system"]


class ChatMessage(BaseModel):
    """One entry of the conversation; list order is the model's context order."""

    role: ChatRole
    content: str


class ToolCall(BaseModel):
    """A call the router should execute."""

    name: str = Field(..., description="Registered tool name")
    args: Dict[str, Any] = Field(default_factory=dict, description="Arguments for the tool")


# ---------------------------------------------------------------------------
# Model stream contract
# ---------------------------------------------------------------------------
class ToolCallDelta(BaseModel):
    """
    A piece of a tool call as it arrives on the model stream.

    The first delta for an *index* usually carries ``id`` and ``name``; later ones only carry
    more ``arguments`` text.
    """

    index: int
    id: Optional[str] = None
    name: Optional[str] = None
    arguments: str = ""


class StreamEvent(BaseModel):
    """Normalized model stream event (content and/or tool-call deltas)."""

    content: Optional[str] = None
    tool_calls: List[ToolCallDelta] = Field(default_factory=list)
    finish_reason: Optional[str] = None


class TurnResult(BaseModel):
    """What a completed (or abandoned) turn hands back to the session boundary."""

    content: str
    messages: List[ChatMessage]
    session_data: Dict[str, Any] = Field(default_factory=dict)
    iterations: int = 0
    cancelled: bool = False
