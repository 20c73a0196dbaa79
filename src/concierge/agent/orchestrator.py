"""
Streaming orchestration loop for Concierge.

One call to :meth:`Orchestrator.run` drives a conversational turn to completion:

1. send the system prompt, a context message and the history to the model, together with the
   router's current tool catalog,
2. stream content to the caller's sink (cumulative, replace-not-append) while reassembling
   tool-call fragments that arrive interleaved with the content,
3. when the stream ends with tool calls, execute them in index order through the router and add
   their results to the conversation as system messages,
4. ask the model again, until it answers without tools or the iteration bound is hit.

The continuation is an explicit loop over :class:`~concierge.agent.turn.TurnState`, so a long
chain of tool rounds never grows the call stack.
"""

import json
import logging
from contextlib import aclosing
from typing import (
    Any,
    ClassVar,
    Dict,
    List,
    Sequence,
)

from concierge.agent.model_interface import BaseChatModel
from concierge.agent.router import ToolRouter
from concierge.agent.sink import ContentSink
from concierge.agent.turn import (
    ToolCallFragment,
    TurnPhase,
    TurnState,
)
from concierge.common import truncate
from concierge.config import settings
from concierge.core.errors import (
    ModelStreamError,
    RecursionLimitExceeded,
    ToolNotFoundError,
    TurnError,
)
from concierge.core.schema import (
    ChatMessage,
    TurnResult,
)
from concierge.tools import ToolDescriptor

logger = logging.getLogger(__name__)


class Orchestrator:
    """Runs tool-augmented, streamed conversational turns."""

    SYSTEM_PROMPT: ClassVar[
        str
    ] = """\
You are a retail shopping assistant. You have access to the visitor's profile and to product deals
through tools. Use them to:
1. Personalize your responses based on the visitor's profile.
2. Recommend relevant products and deals that match their profile.
3. Keep a natural conversation flow without explicitly mentioning the data you received.
4. Show at most four deals at a time, always with prices.
5. Never make up a customer name, products or data. Wait for tool results and use them.

Deal rules:
- VIP visitors may see every deal; highlight VIP-exclusive deals and explain why they qualify.
- Visitors without a VIP audience only see deals of 10% off or less, and deals whose description
  mentions "VIP" or "exclusive" are hidden from them. Tell them how joining the VIP program gets
  better discounts.
- Always use the real product name, never "Product 1, 2, 3".

Format responses with HTML tags (<div>, <ul>, <li>, <strong>, <h3>, <h4>), never markdown.
Never show raw tool JSON or system message details in your response.
"""

    def __init__(
        self,
        router: ToolRouter,
        model: BaseChatModel,
        *,
        max_iterations: int | None = None,
    ) -> None:
        self._router = router
        self._model = model
        self._max_iterations = (
            max_iterations if max_iterations is not None else settings.MAX_TOOL_ITERATIONS
        )
        if self._max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")

    @property
    def max_iterations(self) -> int:
        """Number of tool rounds allowed before a turn fails."""
        return self._max_iterations

    # -----------------------------------------------------------------------
    # Prompt construction
    # -----------------------------------------------------------------------
    def _context_message(self, visitor_id: str, catalog: Sequence[ToolDescriptor]) -> ChatMessage:
        tool_lines = "\n".join(f"- {tool.name}: {tool.description}" for tool in catalog)
        return ChatMessage(
            role="system",
            content=(
                "Current Context:\n"
                f"Visitor ID: {visitor_id}\n"
                "Visitor profile and product deals are available through these tools:\n"
                f"{tool_lines or '- (no tools available)'}\n\n"
                "Use this information to personalize your response to the visitor's message."
            ),
        )

    def build_request(
        self,
        messages: Sequence[ChatMessage],
        visitor_id: str,
        catalog: Sequence[ToolDescriptor],
    ) -> List[ChatMessage]:
        """Messages sent to the model for one sub-turn."""
        return [
            ChatMessage(role="system", content=self.SYSTEM_PROMPT),
            self._context_message(visitor_id, catalog),
            *messages,
        ]

    @staticmethod
    def _tool_result_message(name: str, result: Any) -> ChatMessage:
        payload = json.dumps(result, indent=2, default=str)
        return ChatMessage(
            role="system",
            content=(
                f"\nTool Result ({name}):\n{payload}\n\n"
                "Use this information to inform your response.\n"
            ),
        )

    @staticmethod
    def _tool_unavailable_message(name: str, exc: ToolNotFoundError) -> ChatMessage:
        return ChatMessage(
            role="system",
            content=(
                f"\nTool Unavailable ({name}): {exc.message}\n\n"
                "This information could not be retrieved. Answer without it and do not invent it.\n"
            ),
        )

    # -----------------------------------------------------------------------
    # Loop
    # -----------------------------------------------------------------------
    async def run(
        self,
        messages: Sequence[ChatMessage],
        visitor_id: str,
        sink: ContentSink | None = None,
    ) -> TurnResult:
        """
        Run one conversational turn, including any tool rounds.

        Parameters
        ----------
        messages:
            Conversation so far; not modified.
        visitor_id:
            Visitor/session identifier placed in the context message.
        sink:
            Receives the cumulative visible content as it grows.  Closed when the run ends.

        Returns
        -------
        TurnResult
            Final content, the extended message list and any session data tools surfaced.

        Raises
        ------
        TurnError
            ``RecursionLimitExceeded``, ``ArgumentParseError`` or ``ModelStreamError``; the turn
            state is discarded.
        """
        state = TurnState(messages=list(messages))
        try:
            return await self._run(state, visitor_id, sink)
        except TurnError as exc:
            state.phase = TurnPhase.FAILED
            logger.error(
                "Turn for visitor %s failed after %d tool round(s): %s (data=%s)",
                visitor_id,
                state.iteration,
                exc,
                exc.data,
            )
            raise
        finally:
            if sink is not None:
                sink.close()

    async def _run(self, state: TurnState, visitor_id: str, sink: ContentSink | None) -> TurnResult:
        while True:
            if _is_closed(sink):
                logger.info("Sink closed before sub-turn %d; abandoning turn", state.iteration)
                return self._finish(state, cancelled=True)

            state.begin_subturn()
            catalog = self._router.catalog()
            request = self.build_request(state.messages, visitor_id, catalog)
            logger.debug(
                "Sub-turn %d: %d messages, tools=%s",
                state.iteration,
                len(request),
                [tool.name for tool in catalog],
            )

            completed = await self._consume_stream(state, request, catalog, sink)
            if not completed:
                return self._finish(state, cancelled=True)

            if not state.fragments:
                state.phase = TurnPhase.DONE
                state.messages.append(ChatMessage(role="assistant", content=state.content))
                logger.info(
                    "Turn for visitor %s done after %d tool round(s)", visitor_id, state.iteration
                )
                return self._finish(state)

            state.phase = TurnPhase.EXECUTING_TOOLS
            for fragment in state.ordered_fragments():
                # Only a tool already running may finish once the caller is gone
                if _is_closed(sink):
                    logger.info("Sink closed before tool %s; abandoning turn", fragment.name)
                    return self._finish(state, cancelled=True)
                await self._execute_fragment(state, fragment)
            if _is_closed(sink):
                logger.info("Sink closed during tool execution; abandoning turn")
                return self._finish(state, cancelled=True)

            state.iteration += 1
            if state.iteration >= self._max_iterations:
                raise RecursionLimitExceeded(
                    f"Tool loop exceeded {self._max_iterations} iteration(s)",
                    data={"iterations": state.iteration},
                )

    async def _consume_stream(
        self,
        state: TurnState,
        request: List[ChatMessage],
        catalog: Sequence[ToolDescriptor],
        sink: ContentSink | None,
    ) -> bool:
        """
        Drain one model stream into *state*.  Returns False if the caller went away.

        Only failures of the model stream itself become ``ModelStreamError``; a failing sink
        propagates its own exception.
        """
        tools = [descriptor.to_function_spec() for descriptor in catalog]
        async with aclosing(self._model.stream(request, tools)) as events:
            while True:
                try:
                    event = await anext(events)
                except StopAsyncIteration:
                    return True
                except Exception as exc:
                    logger.exception("Model stream failed")
                    raise ModelStreamError(
                        "Model stream failed", data={"error": f"{type(exc).__name__}: {exc}"}
                    ) from exc

                if _is_closed(sink):
                    logger.info("Sink closed mid-stream; abandoning turn")
                    return False
                if event.content:
                    content = state.append_content(event.content)
                    if sink is not None:
                        await sink.send(content)
                for delta in event.tool_calls:
                    state.accumulate(delta)
                if event.finish_reason:
                    logger.debug("Model stream finished: %s", event.finish_reason)

    async def _execute_fragment(self, state: TurnState, fragment: ToolCallFragment) -> None:
        args = fragment.parse_arguments()
        logger.info(
            "Model calling tool %s (%s) with args=%s", fragment.name, fragment.call_id, args
        )
        try:
            result = await self._router.call(fragment.name, args)
        except ToolNotFoundError as exc:
            logger.warning("Tool %s unavailable: %s (data=%s)", fragment.name, exc, exc.data)
            state.messages.append(self._tool_unavailable_message(fragment.name, exc))
            return

        logger.debug("Tool %s returned: %s", fragment.name, truncate(str(result)))
        state.messages.append(self._tool_result_message(fragment.name, result))
        descriptor = self._router.find(fragment.name)
        if descriptor is not None and descriptor.session_key:
            state.session_data[descriptor.session_key] = result

    @staticmethod
    def _finish(state: TurnState, cancelled: bool = False) -> TurnResult:
        return TurnResult(
            content=state.content,
            messages=list(state.messages),
            session_data=dict(state.session_data),
            iterations=state.iteration,
            cancelled=cancelled,
        )


def _is_closed(sink: ContentSink | None) -> bool:
    return sink is not None and sink.closed


def session_payload(result: TurnResult) -> Dict[str, Any]:
    """Shape a :class:`TurnResult` for the session boundary (camelCase keys for the web client)."""
    return {
        "content": result.content,
        "messages": [msg.model_dump() for msg in result.messages],
        "visitorData": result.session_data.get("visitor_data"),
        "productDeals": result.session_data.get("product_deals"),
        "iterations": result.iterations,
    }
