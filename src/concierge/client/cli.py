"""Terminal chat client for the Concierge API."""

from __future__ import annotations

import json
import logging
import time
from typing import (
    Any,
    Dict,
    Iterator,
    List,
    Tuple,
)

import httpx

from concierge.common import (
    AnsiColors,
    colored_print,
)
from concierge.config import settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Stream parsing
# ---------------------------------------------------------------------------
def iter_sse_payloads(lines: Iterator[str]) -> Iterator[Dict[str, Any]]:
    """Yield the decoded JSON of every ``data:`` line in an event stream."""
    for line in lines:
        if not line.startswith("data:"):
            continue
        data = line[len("data:") :].strip()
        if not data:
            continue
        try:
            yield json.loads(data)
        except json.JSONDecodeError:
            logger.warning("Skipping malformed event: %s", data)


def render_stream(events: Iterator[Dict[str, Any]]) -> Tuple[str, Dict[str, Any] | None]:
    """
    Print cumulative content as it arrives, printing only what is new each time.

    Returns
    -------
    Tuple of (final content, final ``done`` result or None if the turn failed)
    """
    shown = ""
    for event in events:
        if "error" in event:
            print()
            message = event["error"].get("message", "Unknown error")
            colored_print(f"⚠️ {message}", AnsiColors.RED)
            return shown, None
        result = event.get("result") or {}
        if result.get("done"):
            print()
            return shown, result
        content = result.get("content", "")
        if content.startswith(shown):
            print(content[len(shown) :], end="", flush=True)
        else:  # content was rewritten (new sub-turn); start a fresh line
            print(f"\n{content}", end="", flush=True)
        shown = content
    print()
    return shown, None


# ---------------------------------------------------------------------------
# CLI Client
# ---------------------------------------------------------------------------
def get_user_message(prompt: str = "") -> Tuple[str, bool]:
    """
    Get a message from the user via standard input.

    Returns:
        Tuple of (user_input, success_flag)
        The success_flag is False if input couldn't be read (e.g., Ctrl+C)
    """
    try:
        return input(prompt).strip(), True
    except (EOFError, KeyboardInterrupt):
        return "", False


def stream_chat(
    messages: List[Dict[str, str]], visitor_id: str, max_retries: int = 5
) -> Dict[str, Any] | None:
    """Send one turn to ``/chat/stream`` and render it; retries while the API is starting."""
    api_url = f"http://localhost:{settings.API_PORT}/chat/stream"
    body = {
        "jsonrpc": "2.0",
        "id": int(time.time() * 1000),
        "method": "chat",
        "params": {"messages": messages, "visitorId": visitor_id},
    }

    for attempt in range(max_retries):
        try:
            with httpx.Client(timeout=None) as client:
                with client.stream("POST", api_url, json=body) as response:
                    if response.status_code >= 400:
                        response.read()
                        message = response.json().get("error", {}).get("message", response.text)
                        colored_print(f"API error: {message}", AnsiColors.RED)
                        return None
                    _, done = render_stream(iter_sse_payloads(response.iter_lines()))
                    return done
        except httpx.ConnectError:
            if attempt == max_retries - 1:
                break
            retry_delay = 0.5 * (2**attempt)  # exponential backoff: 0.5s, 1s, 2s, 4s...
            logger.info(
                "API not ready yet, retrying in %.1f seconds (attempt %d/%d)...",
                retry_delay,
                attempt + 1,
                max_retries,
            )
            time.sleep(retry_delay)
        except httpx.HTTPError as e:
            colored_print(f"Error connecting to API: {e}", AnsiColors.RED)
            return None

    colored_print(f"Failed to connect to API after {max_retries} attempts", AnsiColors.RED)
    return None


def run_cli() -> None:
    """Run the terminal client against the local API."""
    colored_print("\n🛍️  Concierge shell - type 'exit' to quit.", AnsiColors.GREEN)
    visitor_id, ok = get_user_message("Visitor ID: ")
    if not ok or not visitor_id:
        colored_print("⚠️ A visitor ID is required", AnsiColors.RED)
        return

    messages: List[Dict[str, str]] = []
    while True:
        colored_print("\n🧑 You: ", AnsiColors.BLUE, end="")
        user_msg, ok = get_user_message()
        if not ok:
            break  # Exit if user input couldn't be retrieved (e.g., Ctrl+C)
        if user_msg.lower() in {"exit", "quit"}:
            break
        if not user_msg:
            continue

        messages.append({"role": "user", "content": user_msg})
        colored_print("🛍️  Assistant: ", AnsiColors.YELLOW, end="")
        done = stream_chat(messages, visitor_id)
        if done is None:
            messages.pop()  # failed turn leaves no trace in the history
            continue

        # The server hands back the whole updated conversation (tool results included)
        messages = [
            {"role": msg["role"], "content": msg["content"]} for msg in done.get("messages", [])
        ]
        if done.get("visitorData"):
            colored_print(
                f"[audiences] {', '.join(done['visitorData'].get('audiences') or []) or 'none'}",
                AnsiColors.MAGENTA,
            )


if __name__ == "__main__":
    run_cli()
