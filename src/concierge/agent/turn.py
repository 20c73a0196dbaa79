"""Per-run state carried by the streaming orchestrator."""

import json
from dataclasses import (
    dataclass,
    field,
)
from enum import Enum
from typing import (
    Any,
    Dict,
    List,
)

from concierge.core.errors import ArgumentParseError
from concierge.core.schema import (
    ChatMessage,
    ToolCallDelta,
)


class TurnPhase(str, Enum):
    """States of one conversational turn."""

    AWAITING_MODEL = "awaiting_model"
    STREAMING_CONTENT = "streaming_content"
    ACCUMULATING_TOOL_CALL = "accumulating_tool_call"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"
    FAILED = "failed"


@dataclass
class ToolCallFragment:
    """A tool call still arriving on the stream, keyed by its stream index."""

    index: int
    call_id: str | None = None
    name: str = ""
    _arguments: List[str] = field(default_factory=list, repr=False)

    @property
    def arguments(self) -> str:
        """Argument text received so far, in emission order."""
        return "".join(self._arguments)

    def append(self, text: str) -> None:
        """Add one more piece of argument text."""
        if text:
            self._arguments.append(text)

    def parse_arguments(self) -> Dict[str, Any]:
        """
        Decode the accumulated argument text.  An empty buffer means no arguments.

        Raises
        ------
        ArgumentParseError
            If the text is not a JSON object.
        """
        text = self.arguments.strip()
        if not text:
            return {}
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ArgumentParseError(
                f"Arguments for tool '{self.name}' are not valid JSON: {exc.msg}",
                data={"tool": self.name, "call_id": self.call_id, "arguments": self.arguments},
            ) from exc
        if not isinstance(parsed, dict):
            raise ArgumentParseError(
                f"Arguments for tool '{self.name}' must be a JSON object",
                data={"tool": self.name, "call_id": self.call_id, "arguments": self.arguments},
            )
        return parsed


@dataclass
class TurnState:
    """Mutable record of one orchestration run; discarded when the run ends."""

    messages: List[ChatMessage]
    fragments: Dict[int, ToolCallFragment] = field(default_factory=dict)
    content: str = ""
    iteration: int = 0
    phase: TurnPhase = TurnPhase.AWAITING_MODEL
    session_data: Dict[str, Any] = field(default_factory=dict)

    def begin_subturn(self) -> None:
        """Reset per-stream accumulators before asking the model again."""
        self.fragments = {}
        self.content = ""
        self.phase = TurnPhase.AWAITING_MODEL

    def append_content(self, delta: str) -> str:
        """Add a content delta and return the cumulative visible content."""
        self.phase = TurnPhase.STREAMING_CONTENT
        self.content += delta
        return self.content

    def accumulate(self, delta: ToolCallDelta) -> ToolCallFragment:
        """Start a fragment for a new index or extend the one already there."""
        self.phase = TurnPhase.ACCUMULATING_TOOL_CALL
        fragment = self.fragments.get(delta.index)
        if fragment is None:
            fragment = ToolCallFragment(
                index=delta.index, call_id=delta.id, name=delta.name or ""
            )
            self.fragments[delta.index] = fragment
        else:
            # Some back-ends only name the call after the first delta
            if delta.id and not fragment.call_id:
                fragment.call_id = delta.id
            if delta.name and not fragment.name:
                fragment.name = delta.name
        fragment.append(delta.arguments)
        return fragment

    def ordered_fragments(self) -> List[ToolCallFragment]:
        """Completed fragments in stream index order."""
        return [self.fragments[index] for index in sorted(self.fragments)]
