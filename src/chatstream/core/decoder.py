"""Incremental decoder for server-sent chat completion streams.

Each event is a single ``data: <json>`` line; the text fragment lives at
``choices[0].delta.content``. ``data: [DONE]`` ends the stream.
"""

from __future__ import annotations

import codecs
import json
import logging
from typing import Any, AsyncGenerator, AsyncIterable, List, Optional

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_SENTINEL = "data: [DONE]"


def extract_delta_text(payload: Any) -> Optional[str]:
    """Return the incremental text field of a parsed event, if present."""
    try:
        content = payload["choices"][0]["delta"].get("content")
    except (KeyError, IndexError, TypeError, AttributeError):
        return None
    if isinstance(content, str) and content:
        return content
    return None


class SSEDecoder:
    """Turns arbitrary byte chunks into text deltas.

    Network reads may split an event anywhere, including inside a multi-byte
    UTF-8 sequence, so both the byte decoding and the line splitting keep state
    between calls to :meth:`feed`.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.done = False

    def feed(self, data: bytes) -> List[str]:
        if self.done:
            return []
        self._buffer += self._decoder.decode(data)
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        return self._process(lines)

    def flush(self) -> List[str]:
        """Signal end of input and process whatever partial line is left."""
        if self.done:
            return []
        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        deltas = self._process([tail])
        self.done = True
        return deltas

    def _process(self, lines: List[str]) -> List[str]:
        deltas: List[str] = []
        for line in lines:
            if self.done:
                break
            text = self._parse_line(line)
            if text:
                deltas.append(text)
        return deltas

    def _parse_line(self, line: str) -> Optional[str]:
        trimmed = line.strip()
        if not trimmed:
            return None
        if trimmed == DONE_SENTINEL:
            self.done = True
            return None
        if not trimmed.startswith(DATA_PREFIX):
            # comments, event names, retry hints
            return None
        try:
            payload = json.loads(trimmed[len(DATA_PREFIX):])
        except json.JSONDecodeError as exc:
            logger.warning("Skipping malformed stream chunk: %s", exc)
            return None
        return extract_delta_text(payload)


async def iter_deltas(byte_stream: AsyncIterable[bytes]) -> AsyncGenerator[str, None]:
    """Lazily yield text deltas from an async byte stream.

    The source is consumed once; iteration stops at ``[DONE]`` or end of input.
    """
    decoder = SSEDecoder()
    async for chunk in byte_stream:
        for delta in decoder.feed(chunk):
            yield delta
        if decoder.done:
            return
    for delta in decoder.flush():
        yield delta
