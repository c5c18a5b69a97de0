"""
Client-facing wire encoding.

Reasoning parts are folded into the plain content channel and wrapped in a
thought block so clients can render them distinctly.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import aclosing

from chatrelay.services.data_stream import REASONING, TEXT, StreamPart

THOUGHT_OPEN = '0: "<div class=\\"__boltThought__\\">"\n'
THOUGHT_CLOSE = '0: "</div>\\n"\n'


class ReasoningWrapTransform:
    """Stateful line rewriter tracking the previous line's channel marker."""

    def __init__(self) -> None:
        self._last = " "

    @property
    def in_reasoning(self) -> bool:
        return self._last.startswith(REASONING)

    def feed(self, line: str) -> list[str]:
        """Rewrite one encoded line; may return injected marker lines first."""
        out: list[str] = []
        is_reasoning = line.startswith(REASONING)
        if is_reasoning and not self.in_reasoning:
            out.append(THOUGHT_OPEN)
        if self.in_reasoning and not is_reasoning:
            out.append(THOUGHT_CLOSE)
        self._last = line

        if is_reasoning:
            content = line.split(":", 1)[1] if ":" in line else ""
            if content.endswith("\n"):
                content = content[:-1]
            line = f"{TEXT}:{content}\n"
        out.append(line)
        return out

    def close(self) -> list[str]:
        """Close an unterminated thought block at end of stream."""
        if self.in_reasoning:
            self._last = " "
            return [THOUGHT_CLOSE]
        return []


async def encode_stream(parts: AsyncGenerator[StreamPart, None]) -> AsyncIterator[bytes]:
    """
    Encode stream parts to UTF-8 wire bytes.

    Closing the returned iterator closes ``parts`` as well.
    """
    transform = ReasoningWrapTransform()
    async with aclosing(parts):
        async for part in parts:
            for line in transform.feed(part.to_line()):
                yield line.encode("utf-8")
    for line in transform.close():
        yield line.encode("utf-8")
