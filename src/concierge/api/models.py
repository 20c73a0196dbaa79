"""
Pydantic models for Concierge API requests.

Requests arrive as JSON-RPC envelopes; these models validate their ``params``.
"""

from typing import List

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
)

from concierge.core.schema import ChatMessage


# ---------------------------------------------------------------------------
# Pydantic params schema
# ---------------------------------------------------------------------------
class VisitorDataParams(BaseModel):
    """Params for ``POST /visitor-data``."""

    model_config = ConfigDict(populate_by_name=True)

    visitor_id: str = Field(..., alias="visitorId", min_length=1)


class ChatParams(BaseModel):
    """Params for ``POST /chat`` and ``POST /chat/stream``."""

    model_config = ConfigDict(populate_by_name=True)

    messages: List[ChatMessage] = Field(..., min_length=1, description="Conversation so far")
    visitor_id: str = Field(..., alias="visitorId", min_length=1)
