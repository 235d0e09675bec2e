"""Server-sent event framing for the Marathon ``/v2/events`` stream."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import AsyncIterator, Optional


@dataclass(frozen=True)
class SSEEvent:
    event: str
    data: str
    id: Optional[str] = None
    retry: Optional[int] = None


@dataclass
class _FrameBuilder:
    event: str = "message"
    data: list[str] = field(default_factory=list)
    id: Optional[str] = None
    retry: Optional[int] = None

    def pending(self) -> bool:
        return bool(self.data) or self.id is not None or self.retry is not None

    def feed(self, line: str) -> None:
        if line.startswith(":"):
            return
        name, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]
        if name == "event":
            self.event = value or "message"
        elif name == "data":
            self.data.append(value)
        elif name == "id":
            self.id = value
        elif name == "retry":
            self.retry = int(value) if value.isdigit() else None

    def build(self) -> SSEEvent:
        return SSEEvent(
            event=self.event, data="\n".join(self.data), id=self.id, retry=self.retry
        )


async def parse_sse_lines(lines: AsyncIterator[str]) -> AsyncIterator[SSEEvent]:
    """Group SSE text lines into frames; comment lines (keepalives) are skipped."""
    frame = _FrameBuilder()
    async for raw_line in lines:
        line = raw_line.rstrip("\r\n")
        if line:
            frame.feed(line)
            continue
        if frame.pending():
            yield frame.build()
        frame = _FrameBuilder()
    if frame.pending():
        yield frame.build()


__all__ = ["SSEEvent", "parse_sse_lines"]
