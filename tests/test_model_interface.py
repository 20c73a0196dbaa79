"""
Tests for the model back-ends, using fake SDK clients that replay canned stream chunks.

Run with:
$ pytest -q
"""

from types import SimpleNamespace as NS

import pytest

from concierge.agent.model_interface import (
    AnthropicChatModel,
    EchoChatModel,
    OpenAIChatModel,
    _to_anthropic_messages,
    load_model,
)
from concierge.core.schema import ChatMessage

TOOLS = [
    {
        "type": "function",
        "function": {
            "name": "lookup",
            "description": "Find a thing",
            "parameters": {"type": "object", "properties": {"id": {"type": "string"}}},
        },
    }
]


async def _replay(items):
    for item in items:
        yield item


async def _collect(stream):
    return [event async for event in stream]


class FakeCreate:
    """Stand-in for an SDK ``create`` coroutine; remembers its kwargs."""

    def __init__(self, items):
        self.items = items
        self.kwargs = None

    async def __call__(self, **kwargs):
        self.kwargs = kwargs
        return _replay(self.items)


def test_load_model_by_name() -> None:
    assert isinstance(load_model("echo"), EchoChatModel)
    assert isinstance(load_model("ECHO"), EchoChatModel)
    with pytest.raises(ValueError):
        load_model("nonexistent")


@pytest.mark.asyncio
async def test_echo_model_repeats_last_user_message() -> None:
    messages = [
        ChatMessage(role="user", content="first"),
        ChatMessage(role="assistant", content="ok"),
        ChatMessage(role="user", content="hello there"),
    ]

    events = await _collect(EchoChatModel().stream(messages, []))

    assert [e.content for e in events[:-1]] == ["hello", " there"]
    assert events[-1].finish_reason == "stop"


def test_anthropic_message_conversion() -> None:
    """Leading system text becomes the prompt; later system text and same-role runs are merged."""
    messages = [
        ChatMessage(role="system", content="prompt"),
        ChatMessage(role="system", content="context"),
        ChatMessage(role="user", content="hi"),
        ChatMessage(role="system", content="Tool Result"),
        ChatMessage(role="assistant", content="answer"),
    ]

    system, turns = _to_anthropic_messages(messages)

    assert system == "prompt\n\ncontext"
    assert turns == [
        {"role": "user", "content": "hi\n\n[system]\nTool Result"},
        {"role": "assistant", "content": "answer"},
    ]


@pytest.mark.asyncio
async def test_openai_model_maps_chunks() -> None:
    def chunk(content=None, tool_calls=None, finish_reason=None):
        delta = NS(content=content, tool_calls=tool_calls)
        return NS(choices=[NS(delta=delta, finish_reason=finish_reason)])

    def tool_call(index, arguments, id=None, name=None):  # pylint: disable=redefined-builtin
        return NS(index=index, id=id, function=NS(name=name, arguments=arguments))

    create = FakeCreate(
        [
            chunk(content="Hi"),
            NS(choices=[]),
            chunk(tool_calls=[tool_call(0, '{"id":', id="call_1", name="lookup")]),
            chunk(tool_calls=[tool_call(0, '"7"}')]),
            chunk(finish_reason="tool_calls"),
        ]
    )
    model = OpenAIChatModel(client=NS(chat=NS(completions=NS(create=create))))

    events = await _collect(model.stream([ChatMessage(role="user", content="x")], TOOLS))

    assert create.kwargs["stream"] is True
    assert create.kwargs["tools"] == TOOLS
    assert create.kwargs["messages"] == [{"role": "user", "content": "x"}]
    assert events[0].content == "Hi"
    assert events[1].tool_calls[0].name == "lookup"
    assert events[1].tool_calls[0].id == "call_1"
    assert "".join(e.tool_calls[0].arguments for e in events[1:3]) == '{"id":"7"}'
    assert events[-1].finish_reason == "tool_calls"


@pytest.mark.asyncio
async def test_openai_model_omits_empty_tools() -> None:
    create = FakeCreate([])
    model = OpenAIChatModel(client=NS(chat=NS(completions=NS(create=create))))

    assert await _collect(model.stream([ChatMessage(role="user", content="x")], [])) == []
    assert "tools" not in create.kwargs


@pytest.mark.asyncio
async def test_anthropic_model_maps_events() -> None:
    create = FakeCreate(
        [
            NS(type="message_start"),
            NS(type="content_block_start", index=0, content_block=NS(type="text")),
            NS(type="content_block_delta", index=0, delta=NS(type="text_delta", text="Hi")),
            NS(
                type="content_block_start",
                index=1,
                content_block=NS(type="tool_use", id="toolu_1", name="lookup"),
            ),
            NS(
                type="content_block_delta",
                index=1,
                delta=NS(type="input_json_delta", partial_json='{"id": "7"}'),
            ),
            NS(type="message_delta", delta=NS(stop_reason="tool_use")),
        ]
    )
    model = AnthropicChatModel(client=NS(messages=NS(create=create)))

    events = await _collect(
        model.stream(
            [ChatMessage(role="system", content="sys"), ChatMessage(role="user", content="x")],
            TOOLS,
        )
    )

    assert create.kwargs["system"] == "sys"
    assert create.kwargs["tools"][0]["input_schema"] == TOOLS[0]["function"]["parameters"]
    assert [e.content for e in events if e.content] == ["Hi"]
    calls = [delta for e in events for delta in e.tool_calls]
    assert calls[0].id == "toolu_1" and calls[0].index == 1
    assert calls[1].arguments == '{"id": "7"}'
    assert events[-1].finish_reason == "tool_use"
