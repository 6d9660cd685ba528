"""Stateful splitter turning the adapter's byte stream into reply frames."""

import logging
from typing import List, Union

from elm327_lib import protocol

logger = logging.getLogger(__name__)


class ResponseFramer:
    """Accumulates incoming chunks and yields one frame per reply line.

    The adapter terminates every reply with the '>' prompt. Text after the
    last prompt of a chunk is the start of the next reply and is kept as the
    pending tail, so a reply split across chunks is reassembled exactly once.

    Not thread-safe: callers must serialize feed() calls in arrival order.
    """

    def __init__(self) -> None:
        self._buffer = ""

    def feed(self, chunk: Union[bytes, str]) -> List[str]:
        """Append a chunk and return every frame it completes, in arrival order.

        Hex lines are compacted ("41 0C 1A F8" -> "410C1AF8"); status text
        such as "NO DATA" is returned verbatim.

        Args:
            chunk: Raw bytes from the transport (decoded as ASCII) or text

        Returns:
            Completed frames; empty if no prompt has arrived yet
        """
        if isinstance(chunk, bytes):
            chunk = chunk.decode("ascii", errors="replace")

        self._buffer += chunk
        pieces = self._buffer.split(protocol.PROMPT)

        if len(pieces) < 2:
            return []

        # Last piece has no prompt after it yet
        self._buffer = pieces[-1]

        frames: List[str] = []
        for piece in pieces[:-1]:
            for message in piece.split(protocol.MESSAGE_DELIMITER):
                message = message.strip()
                if not message:
                    continue
                if protocol.RE_HEX_LINE.match(message):
                    message = message.replace(" ", "")
                frames.append(message)

        if frames:
            logger.debug(f"Framed {len(frames)} message(s): {frames!r}")
        return frames

    @property
    def pending(self) -> str:
        """Text received since the last prompt."""
        return self._buffer

    def reset(self) -> None:
        """Drop any pending partial reply."""
        if self._buffer:
            logger.debug(f"Discarding {len(self._buffer)} pending chars: {self._buffer!r}")
        self._buffer = ""
