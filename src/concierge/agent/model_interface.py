"""
Model interface for Concierge.

This module is the only place that *directly* calls an LLM.  Everything else (orchestrator, tools,
router) stays model-agnostic and only sees :class:`~concierge.core.schema.StreamEvent` objects.

We support these back-ends out of the box:

1. **OpenAI** chat completions with function calling.
2. **Anthropic** messages API with tool use.
3. **echo**, an offline model that repeats the user's message (handy without API keys).

Additional providers can be added by subclassing :class:`BaseChatModel` and registering via
:func:`register_model`.
"""

import logging
from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    Any,
    AsyncIterator,
    Callable,
    Dict,
    List,
    Sequence,
    Tuple,
    Type,
)

from concierge.config import settings
from concierge.core.schema import (
    ChatMessage,
    StreamEvent,
    ToolCallDelta,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Registry helpers
# ---------------------------------------------------------------------------
_MODEL_REGISTRY: dict[str, Type["BaseChatModel"]] = {}


def register_model(name: str) -> Callable:
    """Decorator to register a model back-end class under *name*."""

    def wrapper(cls: Type["BaseChatModel"]) -> Type["BaseChatModel"]:
        _MODEL_REGISTRY[name] = cls
        return cls

    return wrapper


def load_model(name: str | None = None) -> "BaseChatModel":
    """
    Factory that returns an instantiated model back-end.

    Fallback order:
    1. *name* arg
    2. ``settings.MODEL_PROVIDER`` env option
    """

    target = name or settings.MODEL_PROVIDER
    cls = _MODEL_REGISTRY.get(target.lower())
    if cls is None:
        raise ValueError(f"Model provider '{target}' is not registered.")
    return cls()


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------
class BaseChatModel(ABC):
    """Opaque token-streaming oracle with an optional tool-call channel."""

    @abstractmethod
    def stream(
        self, messages: Sequence[ChatMessage], tools: Sequence[Dict[str, Any]]
    ) -> AsyncIterator[StreamEvent]:
        """
        Stream one model turn.

        Implementations are async generators.  Tool-call argument text must be yielded exactly as
        received, without reordering; stream exhaustion signals the end of the turn.
        """


# ---------------------------------------------------------------------------
# Concrete back-ends
# ---------------------------------------------------------------------------
@register_model("openai")
class OpenAIChatModel(BaseChatModel):
    """OpenAI chat completions, streamed."""

    def __init__(self, client: Any = None) -> None:
        if client is None:
            import openai  # pylint: disable=import-outside-toplevel

            client = openai.AsyncOpenAI(api_key=settings.OPENAI_API_KEY)
        self._client = client

    async def stream(
        self, messages: Sequence[ChatMessage], tools: Sequence[Dict[str, Any]]
    ) -> AsyncIterator[StreamEvent]:
        request: Dict[str, Any] = {
            "model": settings.OPENAI_MODEL,
            "messages": [msg.model_dump() for msg in messages],
            "stream": True,
            "temperature": settings.TEMPERATURE,
            "max_tokens": settings.MAX_TOKENS,
        }
        if tools:
            request["tools"] = list(tools)
            request["tool_choice"] = "auto"

        response = await self._client.chat.completions.create(**request)
        async for chunk in response:
            if not chunk.choices:
                continue
            choice = chunk.choices[0]
            delta = choice.delta
            tool_deltas = [
                ToolCallDelta(
                    index=call.index,
                    id=call.id,
                    name=call.function.name if call.function else None,
                    arguments=(call.function.arguments or "") if call.function else "",
                )
                for call in (getattr(delta, "tool_calls", None) or [])
            ]
            yield StreamEvent(
                content=getattr(delta, "content", None) or None,
                tool_calls=tool_deltas,
                finish_reason=choice.finish_reason,
            )


def _to_anthropic_messages(
    messages: Sequence[ChatMessage],
) -> Tuple[str, List[Dict[str, str]]]:
    """
    Split *messages* into Anthropic's ``system`` prompt and alternating turns.

    Leading system messages form the system prompt.  Later system messages (tool results) have no
    Anthropic equivalent and are sent as user turns; consecutive same-role turns are merged.
    """
    system_parts: List[str] = []
    turns: List[Dict[str, str]] = []
    leading = True
    for msg in messages:
        if msg.role == "system" and leading:
            system_parts.append(msg.content)
            continue
        leading = False
        role = "assistant" if msg.role == "assistant" else "user"
        content = f"[system]\n{msg.content}" if msg.role == "system" else msg.content
        if turns and turns[-1]["role"] == role:
            turns[-1]["content"] += f"\n\n{content}"
        else:
            turns.append({"role": role, "content": content})
    return "\n\n".join(system_parts), turns


@register_model("anthropic")
class AnthropicChatModel(BaseChatModel):
    """Anthropic messages API, streamed."""

    def __init__(self, client: Any = None) -> None:
        if client is None:
            import anthropic  # pylint: disable=import-outside-toplevel

            client = anthropic.AsyncAnthropic(api_key=settings.ANTHROPIC_API_KEY)
        self._client = client

    async def stream(
        self, messages: Sequence[ChatMessage], tools: Sequence[Dict[str, Any]]
    ) -> AsyncIterator[StreamEvent]:
        system, turns = _to_anthropic_messages(messages)
        request: Dict[str, Any] = {
            "model": settings.ANTHROPIC_MODEL,
            "max_tokens": settings.MAX_TOKENS,
            "temperature": settings.TEMPERATURE,
            "system": system,
            "messages": turns,
            "stream": True,
        }
        if tools:
            request["tools"] = [
                {
                    "name": spec["function"]["name"],
                    "description": spec["function"]["description"],
                    "input_schema": spec["function"]["parameters"],
                }
                for spec in tools
            ]

        response = await self._client.messages.create(**request)
        async for event in response:
            if event.type == "content_block_start" and event.content_block.type == "tool_use":
                yield StreamEvent(
                    tool_calls=[
                        ToolCallDelta(
                            index=event.index,
                            id=event.content_block.id,
                            name=event.content_block.name,
                        )
                    ]
                )
            elif event.type == "content_block_delta":
                if event.delta.type == "text_delta":
                    yield StreamEvent(content=event.delta.text)
                elif event.delta.type == "input_json_delta":
                    yield StreamEvent(
                        tool_calls=[
                            ToolCallDelta(index=event.index, arguments=event.delta.partial_json)
                        ]
                    )
            elif event.type == "message_delta":
                yield StreamEvent(finish_reason=event.delta.stop_reason)


@register_model("echo")
class EchoChatModel(BaseChatModel):
    """Offline back-end: streams the last user message back, word by word.  Never calls tools."""

    async def stream(
        self, messages: Sequence[ChatMessage], tools: Sequence[Dict[str, Any]]
    ) -> AsyncIterator[StreamEvent]:
        last_user = next((m.content for m in reversed(messages) if m.role == "user"), "")
        words = last_user.split(" ")
        for i, word in enumerate(words):
            yield StreamEvent(content=word if i == 0 else f" {word}")
        yield StreamEvent(finish_reason="stop")
