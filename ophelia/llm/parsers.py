"""
Wire-format stream parsers.

WHAT: Turn raw response lines into text deltas plus a terminal flag
WHY: Providers speak three different streaming formats behind one contract
HOW: Small line-fed state machines; malformed lines are skipped, never fatal

Formats:
- SSE-JSON (OpenAI / GitHub models): "data: {...}" lines, "data: [DONE]" terminal,
  text at choices[0].delta.content
- Typed-event SSE (Anthropic): JSON payload with a "type" discriminator,
  message_stop terminal
- NDJSON (Ollama): one JSON object per line, "done": true terminal
"""

import json
from typing import AsyncIterator, Iterable

from ..utils.logger import get_logger
from .cancellation import CancellationToken

logger = get_logger(__name__)

DONE_MARKER = "[DONE]"


def strip_sse_prefix(line: str) -> str | None:
    """Return the payload of a 'data:' line, or None for any other line."""
    if not line.startswith("data:"):
        return None
    payload = line[5:]
    if payload.startswith(" "):
        payload = payload[1:]
    return payload.strip()


class StreamParser:
    """Base class for line-fed parsers."""

    format_name = "stream"

    def __init__(self):
        self.done = False
        self.anomalies = 0

    def feed(self, line: str) -> list[str]:
        """
        Consume one line of the response body.

        Returns:
            Text deltas produced by this line, in order
        """
        raise NotImplementedError

    def close(self) -> list[str]:
        """Signal end of body; returns any text still held back."""
        self.done = True
        return []

    def _anomaly(self, message: str, line: str) -> None:
        self.anomalies += 1
        logger.warning(f"Skipping malformed {self.format_name} line ({message}): {line[:100]}")


class SSEJSONParser(StreamParser):
    """
    OpenAI-compatible server-sent events.

    With coalesce_chars set, deltas are held back until the pending text is
    longer than coalesce_chars or a delta carries punctuation/newline; the
    pending text is always released before the terminal marker is honoured.
    """

    format_name = "SSE"
    BREAK_CHARS = ".,!?;\n"

    def __init__(self, coalesce_chars: int | None = None):
        super().__init__()
        self.coalesce_chars = coalesce_chars
        self._pending = ""

    def feed(self, line: str) -> list[str]:
        if self.done:
            return []
        line = line.strip()
        if not line:
            return []

        data_str = strip_sse_prefix(line)
        if data_str is None:
            # event:/id:/comment lines carry no content
            return []

        if data_str == DONE_MARKER:
            released = self._release()
            self.done = True
            return released

        try:
            data = json.loads(data_str)
            choices = data["choices"]
            # Azure-hosted models open with a prompt-filter chunk that has no choices
            content = choices[0].get("delta", {}).get("content") if choices else None
        except (json.JSONDecodeError, KeyError, IndexError, TypeError, AttributeError) as e:
            self._anomaly(type(e).__name__, line)
            return []

        if not isinstance(content, str) or not content:
            return []

        if self.coalesce_chars is None:
            return [content]

        self._pending += content
        if len(self._pending) > self.coalesce_chars or any(c in self.BREAK_CHARS for c in content):
            return self._release()
        return []

    def close(self) -> list[str]:
        released = self._release()
        self.done = True
        return released

    def _release(self) -> list[str]:
        if not self._pending:
            return []
        text, self._pending = self._pending, ""
        return [text]


class AnthropicEventParser(StreamParser):
    """Anthropic Messages API typed-event stream."""

    format_name = "Anthropic SSE"

    def __init__(self):
        super().__init__()
        self.message_text = ""

    def feed(self, line: str) -> list[str]:
        if self.done:
            return []
        line = line.strip()
        if not line:
            return []

        data_str = strip_sse_prefix(line)
        if data_str is None:
            return []
        if data_str == DONE_MARKER:
            self.done = True
            return []

        try:
            event = json.loads(data_str)
        except json.JSONDecodeError:
            self._anomaly("invalid JSON", line)
            return []
        if not isinstance(event, dict):
            self._anomaly("not an object", line)
            return []

        event_type = event.get("type")

        if event_type == "message_start":
            self.message_text = ""
            return []

        if event_type in ("content_block_delta", "message_delta"):
            delta = event.get("delta")
            text = delta.get("text") if isinstance(delta, dict) else None
            if isinstance(text, str) and text:
                self.message_text += text
                return [text]
            return []

        if event_type == "message_stop":
            self.done = True
            return []

        if event_type == "error":
            logger.warning(f"Anthropic stream reported an error event: {data_str[:200]}")
        else:
            logger.debug(f"Ignoring Anthropic event type: {event_type}")
        return []


class NDJSONParser(StreamParser):
    """
    Ollama newline-delimited JSON.

    Content is looked up under message.content, content, response, delta (first
    non-empty string wins). Objects with none of those keys are passed through
    verbatim so nothing is silently dropped.
    """

    format_name = "NDJSON"
    CONTENT_KEYS = ("content", "response", "delta")

    def feed(self, line: str) -> list[str]:
        if self.done:
            return []
        raw = line.strip()
        if not raw:
            return []

        # Some proxies re-wrap the stream as SSE
        payload = strip_sse_prefix(raw)
        if payload is None:
            payload = raw
        if not payload:
            return []
        if payload == DONE_MARKER:
            self.done = True
            return []

        try:
            data = json.loads(payload)
        except json.JSONDecodeError:
            self._anomaly("invalid JSON", raw)
            return []

        if not isinstance(data, dict):
            self._anomaly("not an object", raw)
            return []

        text, recognized = self._extract(data)

        if data.get("done") is True:
            self.done = True
            return [text] if text else []

        if text:
            return [text]
        if recognized:
            return []

        logger.debug(f"Unrecognized NDJSON shape, passing line through: {payload[:100]}")
        return [payload]

    def _extract(self, data: dict) -> tuple[str, bool]:
        """Return (first non-empty content, whether any known key was present)."""
        recognized = False

        message = data.get("message")
        if isinstance(message, dict) and "content" in message:
            recognized = True
            content = message.get("content")
            if isinstance(content, str) and content:
                return content, True

        for key in self.CONTENT_KEYS:
            if key in data:
                recognized = True
                value = data[key]
                if isinstance(value, str) and value:
                    return value, True

        return "", recognized or "done" in data


async def parse_lines(
    parser: StreamParser,
    lines: AsyncIterator[str] | Iterable[str],
    cancel_token: CancellationToken | None = None,
) -> AsyncIterator[str]:
    """
    Drive a parser over a line source until its terminal signal.

    Stops before the next line once cancel_token is set; a cancelled stream
    is not closed, so a coalesced tail is dropped.

    Args:
        parser: Fresh parser instance
        lines: Async or sync iterable of body lines
        cancel_token: Checked before every line

    Yields:
        Text deltas in arrival order
    """
    def cancelled() -> bool:
        return cancel_token is not None and cancel_token.is_cancelled

    if hasattr(lines, "__aiter__"):
        async for line in lines:
            if cancelled():
                return
            for text in parser.feed(line):
                yield text
            if parser.done:
                break
    else:
        for line in lines:
            if cancelled():
                return
            for text in parser.feed(line):
                yield text
            if parser.done:
                break

    if cancelled() and not parser.done:
        return
    for text in parser.close():
        yield text
