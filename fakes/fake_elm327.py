"""Fake ELM327 adapter implementing the ByteTransport interface.

Simulates enough of the adapter firmware for the reader to be exercised
without hardware: command echo until ATE0, spaced hex until ATS0, AT command
acknowledgements, canned PID replies, NO DATA for anything else, and the '>'
prompt after every reply.
"""

import logging
import threading
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

# Request body (no reply-count digit) -> reply line as the ECU would send it
DEFAULT_RESPONSES: Dict[str, str] = {
    "0100": "41 00 BE 3E B8 11",
    "0105": "41 05 7B",
    "010C": "41 0C 1A F8",
    "010D": "41 0D 3C",
    "0110": "41 10 01 F4",
    "0111": "41 11 33",
    "03": "43 01 33 00 00 00 00",
}


class FakeELM327:
    """Deterministic simulator of an ELM327 adapter.

    Replies are delivered synchronously from write(), optionally split into
    chunks of `chunk_size` bytes to exercise reassembly.
    """

    def __init__(
        self,
        responses: Optional[Dict[str, str]] = None,
        chunk_size: Optional[int] = None,
        auto_reply: bool = True,
        firmware_version: str = "ELM327 v1.5",
    ) -> None:
        """Initialize fake adapter.

        Args:
            responses: Extra/override canned replies keyed by request body
            chunk_size: Split every reply into chunks of this many bytes
            auto_reply: If False, writes are recorded but nothing is sent back
            firmware_version: Banner printed after ATZ
        """
        self.responses = dict(DEFAULT_RESPONSES)
        if responses:
            self.responses.update(responses)
        self.chunk_size = chunk_size
        self.auto_reply = auto_reply
        self.firmware_version = firmware_version

        # Adapter settings, as changed by AT commands
        self.echo = True
        self.spaces = True
        self.headers = False
        self.linefeeds = True
        self.protocol = "0"

        # Number of upcoming write() calls that raise
        self.fail_writes = 0

        self.written: List[bytes] = []
        self.is_open = True

        self._handler: Optional[Callable[[bytes], None]] = None
        self._lock = threading.Lock()

    # ========================================================================
    # ByteTransport
    # ========================================================================

    def write(self, data: bytes) -> None:
        if not self.is_open:
            raise OSError("Port is closed")

        with self._lock:
            if self.fail_writes > 0:
                self.fail_writes -= 1
                raise OSError("Simulated write failure")
            self.written.append(data)

        logger.debug(f"FakeELM327 received: {data!r}")

        for command in data.decode("ascii").split("\r"):
            if command:
                reply = self._respond(command.strip().upper())
                if self.auto_reply:
                    self.send(reply)

    def set_data_handler(self, handler: Optional[Callable[[bytes], None]]) -> None:
        self._handler = handler

    def close(self) -> None:
        self.is_open = False
        logger.debug("FakeELM327 closed")

    # ========================================================================
    # Test helpers
    # ========================================================================

    def send(self, text: str) -> None:
        """Push raw text to the host, honoring chunk_size."""
        handler = self._handler
        if handler is None:
            return

        data = text.encode("ascii")
        size = self.chunk_size or len(data)
        for offset in range(0, len(data), size):
            handler(data[offset : offset + size])

    @property
    def commands(self) -> List[str]:
        """Everything written so far, decoded."""
        with self._lock:
            return [data.decode("ascii") for data in self.written]

    # ========================================================================
    # Internal: command handling
    # ========================================================================

    def _respond(self, command: str) -> str:
        echo = command + "\r" if self.echo else ""

        if command.startswith("AT"):
            return echo + self._handle_at(command[2:]) + "\r\r>"

        # Odd length means a trailing expected-reply digit
        body = command[:-1] if len(command) % 2 else command
        line = self.responses.get(body, "NO DATA")
        if not self.spaces:
            line = line.replace(" ", "")
        return echo + line + "\r\r>"

    def _handle_at(self, setting: str) -> str:
        if setting == "Z":
            self.echo = True
            self.spaces = True
            self.headers = False
            self.linefeeds = True
            return "\r" + self.firmware_version
        if setting == "E0":
            self.echo = False
        elif setting == "S0":
            self.spaces = False
        elif setting == "H0":
            self.headers = False
        elif setting == "L0":
            self.linefeeds = False
        elif setting.startswith("SP") and len(setting) == 3 and setting[2].isdigit():
            self.protocol = setting[2]
        elif setting.startswith("AT") and setting[2:] in ("0", "1", "2"):
            pass
        else:
            return "?"
        return "OK"
