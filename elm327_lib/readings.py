"""Bounded in-memory history of decoded replies."""

import logging
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Deque, List, Optional

from elm327_lib.models import Reading, Reply

logger = logging.getLogger(__name__)


class ReadingBuffer:
    """Fixed-size history of readings, oldest evicted first.

    Written from the transport's receive path and read from application
    threads, so every access holds the lock.
    """

    def __init__(self, maxlen: int = 1000) -> None:
        if maxlen <= 0:
            raise ValueError(f"maxlen must be positive, got {maxlen}")

        self._readings: Deque[Reading] = deque(maxlen=maxlen)
        self._lock = threading.Lock()

    def record(self, reply: Reply, ts: Optional[datetime] = None) -> Reading:
        """Stamp a reply (UTC now unless ts is given) and store it."""
        reading = Reading(ts=ts or datetime.now(timezone.utc), reply=reply)
        with self._lock:
            self._readings.append(reading)
        return reading

    def snapshot(self) -> List[Reading]:
        """Copy of all readings, ordered oldest to newest."""
        with self._lock:
            return list(self._readings)

    def latest(self, name: Optional[str] = None) -> Optional[Reading]:
        """Most recent reading, or the most recent one decoded as `name`.

        Args:
            name: PID table name (e.g., "rpm"). Only PID and DTC replies
                  carry a name.

        Returns:
            Reading, or None if there is no match
        """
        with self._lock:
            for reading in reversed(self._readings):
                if name is None or getattr(reading.reply, "name", None) == name:
                    return reading
        return None

    def clear(self) -> None:
        with self._lock:
            dropped = len(self._readings)
            self._readings.clear()
        logger.debug(f"Dropped {dropped} buffered readings")

    def __len__(self) -> int:
        with self._lock:
            return len(self._readings)

    @property
    def maxlen(self) -> int:
        return self._readings.maxlen or 0
