"""Cancellable fixed-period background task."""

import logging
import threading
from typing import Callable, Optional

from elm327_lib import protocol

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Runs a callback every `interval_s` seconds on a daemon thread.

    The first call happens one interval after start(). stop() returns only
    after the thread has exited, so no callback runs once it has returned
    (unless stop() is called from the callback itself).
    """

    def __init__(
        self,
        callback: Callable[[], None],
        interval_s: float,
        name: str,
        join_timeout_s: Optional[float] = None,
    ) -> None:
        if interval_s <= 0:
            raise ValueError(f"interval_s must be positive, got {interval_s}")

        self._callback = callback
        self._interval = interval_s
        self._name = name
        self._join_timeout = (
            protocol.THREAD_JOIN_TIMEOUT_S if join_timeout_s is None else join_timeout_s
        )
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    def start(self) -> None:
        """Start the background thread.

        Raises:
            RuntimeError: If the task is already running
        """
        if self.is_running():
            raise RuntimeError(f"{self._name} already running")

        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._loop,
            args=(self._stop_event,),
            name=self._name,
            daemon=True,
        )
        self._thread.start()
        logger.debug(f"Started {self._name} every {self._interval:.3f}s")

    def stop(self) -> bool:
        """Cancel the task and wait for its thread to exit. Idempotent.

        Returns:
            False if the thread is still inside its callback after the join
            timeout. The handle is kept, so start() refuses until that
            thread has exited.
        """
        self._stop_event.set()

        thread = self._thread
        if thread is None:
            return True

        # Called from inside the callback: the loop exits after it returns
        if thread is not threading.current_thread():
            thread.join(timeout=self._join_timeout)
            if thread.is_alive():
                logger.warning(
                    f"{self._name} still running after {self._join_timeout:.1f}s, keeping its handle"
                )
                return False

        self._thread = None
        logger.debug(f"Stopped {self._name}")
        return True

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def interval_s(self) -> float:
        return self._interval

    def _loop(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(timeout=self._interval):
            try:
                self._callback()
            except Exception as e:
                logger.error(f"Error in {self._name}: {e}", exc_info=True)
