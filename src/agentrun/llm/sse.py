"""Server-Sent Events decoding for streaming completions.

Bytes arrive from the transport in arbitrary chunks. :class:`LineFramer`
turns them into complete lines and :class:`SSEDecoder` folds those lines
into events, dispatching one event per blank line::

    decoder = SSEDecoder()
    for chunk in chunks:
        for event in decoder.feed(chunk):
            handle(event.data)
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from agentrun.errors import CancelledRequestError, ProtocolError
from agentrun.llm.stream import StreamAction

logger = logging.getLogger(__name__)


class LineFramer:
    """Split a byte stream into lines terminated by ``\\n``, ``\\r\\n`` or ``\\r``."""

    def __init__(self, max_line_size: int | None = None):
        """Initialize the framer.

        Args:
            max_line_size: Optional bound on a single line, in bytes
        """
        self.max_line_size = max_line_size
        self._buffer = bytearray()
        self._pending_cr = False

    def feed(self, data: bytes) -> list[bytes]:
        """Consume a chunk and return every line it completes.

        Args:
            data: Raw bytes from the transport

        Returns:
            Complete lines, without their terminators

        Raises:
            ProtocolError: If a line grows past ``max_line_size``
        """
        lines: list[bytes] = []
        if not data:
            return lines
        start = 0

        # A \r at the end of the previous chunk already ended its line.
        if self._pending_cr and data[:1] == b"\n":
            start = 1
        self._pending_cr = False

        i = start
        end = len(data)
        while i < end:
            byte = data[i]
            if byte == 0x0A or byte == 0x0D:
                self._check_size(len(self._buffer) + i - start)
                self._buffer += data[start:i]
                lines.append(bytes(self._buffer))
                self._buffer.clear()
                if byte == 0x0D:
                    if i + 1 < end and data[i + 1] == 0x0A:
                        i += 1
                    elif i + 1 == end:
                        self._pending_cr = True
                i += 1
                start = i
            else:
                i += 1

        self._buffer += data[start:end]
        self._check_size(len(self._buffer))
        return lines

    def _check_size(self, size: int) -> None:
        if self.max_line_size is not None and size > self.max_line_size:
            raise ProtocolError(f"SSE line exceeds {self.max_line_size} bytes")

    def close(self) -> None:
        """End of input. A trailing unterminated line is dropped."""
        if self._buffer:
            logger.debug("Dropping %d bytes of unterminated SSE data", len(self._buffer))
        self._buffer.clear()
        self._pending_cr = False


@dataclass(frozen=True)
class SSEEvent:
    """A dispatched Server-Sent Event."""

    data: str
    event: str = "message"
    id: str | None = None


SSEHandler = Callable[[SSEEvent], "StreamAction | None"]


class SSEDecoder:
    """Accumulate ``event``/``data``/``id`` fields and dispatch on blank lines."""

    def __init__(self, handler: SSEHandler | None = None, max_line_size: int | None = None):
        """Initialize the decoder.

        Args:
            handler: Optional callback for each dispatched event. Returning
                ``StreamAction.ABORT`` halts decoding for this response.
            max_line_size: Optional bound passed to the line framer
        """
        self.handler = handler
        self.aborted = False
        self._framer = LineFramer(max_line_size=max_line_size)
        self._event: str | None = None
        self._data: str | None = None
        self._id: str | None = None

    def process_line(self, line: str) -> SSEEvent | None:
        """Apply one line to the pending event.

        Args:
            line: A single line without its terminator

        Returns:
            The completed event when ``line`` is blank and data was accumulated
        """
        if not line:
            return self._dispatch()

        if line.startswith(":"):
            return None

        name, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if name == "data":
            self._data = value if self._data is None else f"{self._data}\n{value}"
        elif name == "event":
            self._event = value
        elif name == "id":
            self._id = value
        # Unknown fields are ignored
        return None

    def feed(self, chunk: bytes) -> list[SSEEvent]:
        """Feed raw bytes and return the events they complete.

        Raises:
            CancelledRequestError: If the handler aborted decoding
        """
        if self.aborted:
            raise CancelledRequestError("SSE decoding was aborted")

        events: list[SSEEvent] = []
        for raw in self._framer.feed(chunk):
            line = raw.decode("utf-8", errors="replace")
            logger.debug("SSE line: %s", line)
            event = self.process_line(line)
            if event is None:
                continue
            events.append(event)
            if self.handler is not None and self.handler(event) is StreamAction.ABORT:
                self.aborted = True
                raise CancelledRequestError("SSE handler aborted the stream")
        return events

    def close(self) -> None:
        """End of input; discards any partially framed line."""
        self._framer.close()

    def _dispatch(self) -> SSEEvent | None:
        event = None
        if self._data is not None:
            event = SSEEvent(data=self._data, event=self._event or "message", id=self._id)
        self._event = None
        self._data = None
        self._id = None
        return event
