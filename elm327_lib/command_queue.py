"""Bounded FIFO of outbound adapter commands."""

import logging
import threading
from collections import deque
from typing import Callable, List, Optional

from elm327_lib import protocol
from elm327_lib.errors import NotConnected, QueueOverflow

logger = logging.getLogger(__name__)


class CommandQueue:
    """Thread-safe bounded FIFO of CR-terminated command strings.

    Unlike ReadingBuffer, a full queue rejects new commands instead of evicting
    old ones: the oldest command is the next one the adapter must see.
    """

    def __init__(
        self,
        capacity: int = protocol.QUEUE_CAPACITY,
        is_connected: Optional[Callable[[], bool]] = None,
        lock: Optional[threading.RLock] = None,
    ) -> None:
        """Initialize command queue.

        Args:
            capacity: Maximum number of pending commands. Defaults to 256.
            is_connected: Callable consulted on every enqueue; when it returns
                          False the command is rejected with NotConnected.
                          None means always connected.
            lock: Lock to share with other state owned by the same reader.
                  A private RLock is created if omitted.
        """
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")

        self._queue: deque[str] = deque()
        self._capacity = capacity
        self._is_connected = is_connected
        self._lock = lock if lock is not None else threading.RLock()

    def enqueue(self, command: str, expected_replies: int = 0) -> str:
        """Format and append a command.

        Args:
            command: Command body without terminator (e.g., "ATZ", "010C")
            expected_replies: Reply count appended before CR (0 = none)

        Returns:
            The formatted command as it will be written

        Raises:
            NotConnected: If the reader is not connected
            QueueOverflow: If the queue is at capacity (command dropped)
            InvalidCommand: If expected_replies is not 0-9 or the command is
                            not ASCII
        """
        if self._is_connected is not None and not self._is_connected():
            raise NotConnected(f"Adapter is not connected, dropping {command!r}")

        formatted = protocol.make_command(command, expected_replies)

        with self._lock:
            if len(self._queue) >= self._capacity:
                raise QueueOverflow(
                    f"Command queue full ({self._capacity}), dropping {command!r}"
                )
            self._queue.append(formatted)
            logger.debug(f"Queued {formatted!r}, queue size: {len(self._queue)}/{self._capacity}")

        return formatted

    def pop(self) -> Optional[str]:
        """Remove and return the oldest command, or None if empty."""
        with self._lock:
            if not self._queue:
                return None
            return self._queue.popleft()

    def snapshot(self) -> List[str]:
        """Copy of pending commands, oldest first."""
        with self._lock:
            return list(self._queue)

    def clear(self) -> None:
        """Drop all pending commands."""
        with self._lock:
            count = len(self._queue)
            self._queue.clear()
            if count:
                logger.debug(f"Cleared {count} pending commands")

    def __len__(self) -> int:
        with self._lock:
            return len(self._queue)

    @property
    def capacity(self) -> int:
        """Maximum number of pending commands."""
        return self._capacity
