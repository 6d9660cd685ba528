"""Poller scheduler: periodically queues requests for a set of PIDs."""

import logging
import threading
from typing import Callable, List, Optional, Sequence

from elm327_lib import pids, protocol
from elm327_lib.errors import ELM327Error
from elm327_lib.models import PIDEntry, PollerState
from elm327_lib.periodic import PeriodicTask

logger = logging.getLogger(__name__)

# Signature of CommandQueue.enqueue
Enqueue = Callable[[str, int], object]


class PollerScheduler:
    """Keeps the active poller set and pushes it into the command queue.

    State machine: IDLE -> POLLING -> IDLE. Every tick enqueues one command
    per active PID, in insertion order, each expecting exactly one reply.
    """

    def __init__(
        self,
        enqueue: Enqueue,
        table: Sequence[PIDEntry] = pids.PIDS,
        drain_period_s: float = protocol.DRAIN_PERIOD_S,
        on_error: Optional[Callable[[ELM327Error], None]] = None,
        lock: Optional[threading.RLock] = None,
        join_timeout_s: Optional[float] = None,
    ) -> None:
        """Initialize scheduler (does not start polling).

        Args:
            enqueue: Called as enqueue(command, expected_replies) for each poll
            table: PID table used to resolve names to commands
            drain_period_s: Queue drain period, used for the default interval
            on_error: Receives enqueue failures raised during a tick; without
                      it they are logged and dropped
            lock: Lock shared with the command queue of the same reader
            join_timeout_s: How long stop() waits for a tick in progress.
                            Defaults to protocol.THREAD_JOIN_TIMEOUT_S.
        """
        self._enqueue = enqueue
        self._table = table
        self._drain_period = drain_period_s
        self._on_error = on_error
        self._lock = lock if lock is not None else threading.RLock()
        self._join_timeout = join_timeout_s

        self._active: List[str] = []
        self._task: Optional[PeriodicTask] = None

    # ========================================================================
    # Active Poller Set
    # ========================================================================

    def add(self, name: str) -> None:
        """Add a PID to the poller set by name.

        Raises:
            UnknownPID: If name is not in the PID table
        """
        command = pids.command_for_name(name, self._table)
        with self._lock:
            if command in self._active:
                logger.debug(f"Poller {name} ({command}) already active")
                return
            self._active.append(command)
        logger.info(f"Added poller {name} ({command})")

    def remove(self, name: str) -> None:
        """Remove a PID from the poller set. Removing an inactive PID is a no-op.

        Raises:
            UnknownPID: If name is not in the PID table
        """
        command = pids.command_for_name(name, self._table)
        with self._lock:
            if command not in self._active:
                logger.debug(f"Poller {name} ({command}) not active")
                return
            self._active.remove(command)
        logger.info(f"Removed poller {name} ({command})")

    def clear(self) -> None:
        """Empty the poller set (polling keeps running, ticks send nothing)."""
        with self._lock:
            self._active.clear()
        logger.info("Cleared all pollers")

    @property
    def active(self) -> List[str]:
        """Copy of the active command strings, in polling order."""
        with self._lock:
            return list(self._active)

    # ========================================================================
    # Timer Control
    # ========================================================================

    def default_interval(self) -> float:
        """Two drain periods per active PID, leaving room for manual requests."""
        with self._lock:
            count = len(self._active)
        return max(1, count) * 2 * self._drain_period

    def start(self, interval_s: Optional[float] = None) -> float:
        """Start polling; restarts the timer if already polling.

        Args:
            interval_s: Seconds between ticks. Defaults to default_interval().

        Returns:
            Interval in use

        Raises:
            RuntimeError: If the previous polling thread is still inside a
                          tick and did not exit within the join timeout
        """
        if interval_s is None:
            interval_s = self.default_interval()

        self.stop()
        if self._task is not None:
            raise RuntimeError("Previous polling thread is still running, not starting another")

        self._task = PeriodicTask(
            self.tick, interval_s, name="PollerScheduler", join_timeout_s=self._join_timeout
        )
        self._task.start()
        logger.info(f"Polling started every {interval_s * 1000:.0f} ms")
        return interval_s

    def stop(self) -> None:
        """Cancel the timer. Idempotent.

        A thread stuck in a tick past the join timeout is kept, so start()
        cannot run a second one beside it.
        """
        task = self._task
        if task is None:
            return

        if task.stop():
            self._task = None
            logger.info("Polling stopped")

    @property
    def state(self) -> PollerState:
        if self._task is not None and self._task.is_running():
            return PollerState.POLLING
        return PollerState.IDLE

    def tick(self) -> int:
        """Queue one poll per active PID.

        Returns:
            Number of commands successfully queued
        """
        queued = 0
        for command in self.active:
            try:
                self._enqueue(command, 1)
                queued += 1
            except ELM327Error as e:
                if self._on_error is not None:
                    self._on_error(e)
                else:
                    logger.warning(f"Poll {command} dropped: {e}")
        return queued
