"""High-level OBD-II reader coordinating queue, framer, decoder and poller."""

import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from elm327_lib import parsing, pids, protocol
from elm327_lib.command_queue import CommandQueue
from elm327_lib.errors import (
    ELM327Error,
    InvalidProtocol,
    MalformedFrame,
    TransportFailure,
    UnsupportedWidth,
)
from elm327_lib.framer import ResponseFramer
from elm327_lib.models import (
    ConnectionState,
    PIDEntry,
    PollerState,
    Reading,
    ReaderConfig,
    Reply,
)
from elm327_lib.periodic import PeriodicTask
from elm327_lib.readings import ReadingBuffer
from elm327_lib.scheduler import PollerScheduler
from elm327_lib.transport import ByteTransport, SerialTransport

logger = logging.getLogger(__name__)

EVENT_CONNECTED = "connected"
EVENT_DATA_RECEIVED = "data_received"
EVENT_ERROR = "error"
EVENT_DEBUG = "debug"

EVENTS = (EVENT_CONNECTED, EVENT_DATA_RECEIVED, EVENT_ERROR, EVENT_DEBUG)


class OBDReader:
    """Talks to one ELM327 adapter over a byte-stream transport.

    Outbound commands go through a bounded queue drained one per tick;
    inbound chunks are framed, decoded against the PID table and delivered
    through the `data_received` event and the reading buffer.

    Each reader owns its own queue, poller set and timers, so several
    readers can run side by side.
    """

    def __init__(
        self,
        config: Optional[ReaderConfig] = None,
        table: Sequence[PIDEntry] = pids.PIDS,
    ) -> None:
        """Initialize reader (does not connect).

        Args:
            config: Tunables; defaults to ReaderConfig()
            table: PID table for name lookups and decoding
        """
        self._config = config or ReaderConfig()
        self._table = table
        self._protocol = self._config.protocol
        self._state = ConnectionState.DISCONNECTED
        self._transport: Optional[ByteTransport] = None

        # Guards the command queue and the active poller set
        self._lock = threading.RLock()
        # Serializes framer feeds
        self._rx_lock = threading.Lock()
        # Serializes connect/disconnect
        self._state_lock = threading.Lock()

        self._queue = CommandQueue(
            capacity=self._config.queue_capacity,
            is_connected=self.is_connected,
            lock=self._lock,
        )
        self._framer = ResponseFramer()
        self._scheduler = PollerScheduler(
            enqueue=self._queue.enqueue,
            table=table,
            drain_period_s=self._config.drain_period_s,
            on_error=self._report,
            lock=self._lock,
        )
        self._buffer = ReadingBuffer(maxlen=self._config.buffer_size)

        self._drain_task: Optional[PeriodicTask] = None
        self._write_failures = 0

        self._handlers: Dict[str, List[Callable[..., Any]]] = {name: [] for name in EVENTS}

        # Store connection params for reconnection
        self._last_port: Optional[str] = self._config.port
        self._last_baud: int = self._config.baud

    # ========================================================================
    # Events
    # ========================================================================

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        """Subscribe to an event.

        Events and handler arguments:
            connected      -> handler()
            data_received  -> handler(reply: Reply)
            error          -> handler(error: ELM327Error)
            debug          -> handler(message: str)

        Raises:
            ValueError: If event is not one of the names above
        """
        if event not in self._handlers:
            raise ValueError(f"Unknown event {event!r}, expected one of {EVENTS}")
        self._handlers[event].append(handler)

    def off(self, event: str, handler: Callable[..., Any]) -> None:
        """Unsubscribe a handler. Unknown handlers are ignored."""
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def _emit(self, event: str, *args: Any) -> None:
        for handler in list(self._handlers[event]):
            try:
                handler(*args)
            except Exception as e:
                logger.error(f"Error in {event} handler: {e}", exc_info=True)

    def _report(self, error: ELM327Error) -> None:
        logger.warning(f"{type(error).__name__}: {error}")
        self._emit(EVENT_ERROR, error)

    def _debug(self, message: str) -> None:
        logger.debug(message)
        self._emit(EVENT_DEBUG, message)

    # ========================================================================
    # Connection Management
    # ========================================================================

    def connect(
        self,
        port: Optional[str] = None,
        baud: Optional[int] = None,
        transport: Optional[ByteTransport] = None,
    ) -> None:
        """Attach to an adapter, queue the init sequence and start draining.

        Args:
            port: Serial device (e.g., "/dev/rfcomm0"). Used when no transport
                  is given; falls back to config.port.
            baud: Baud rate for port. Defaults to config.baud.
            transport: Already open transport (e.g., a test double). If
                       provided, port and baud are ignored.

        Raises:
            TransportFailure: If already connected, the previous drain thread
                              is still stuck in a write, or the port cannot
                              be opened
            ValueError: If neither port nor transport is available
        """
        with self._state_lock:
            if self._state == ConnectionState.CONNECTED:
                raise TransportFailure(f"Already connected (state: {self._state.value})")

            if not self._stop_drain():
                raise TransportFailure("Previous drain thread is still writing, try again later")

            if transport is None:
                port = port or self._config.port
                baud = baud or self._config.baud
                if port is None:
                    raise ValueError("Must provide either 'port' or 'transport'")
                transport = SerialTransport.open(port, baud)
                self._last_port = port
                self._last_baud = baud

            # A lost connection keeps its transport until the next connect
            self._close_transport(exclude=transport)

            logger.info("Connecting to adapter...")
            self._transport = transport
            self._framer.reset()
            self._queue.clear()
            self._write_failures = 0
            self._state = ConnectionState.CONNECTED

            transport.set_data_handler(self.handle_data)

            for command in protocol.make_init_sequence(self._protocol):
                self._queue.enqueue(command)

            self._drain_task = PeriodicTask(
                self.drain_tick, self._config.drain_period_s, name="CommandQueueDrain"
            )
            self._drain_task.start()

        logger.info(f"Connected, protocol {self._protocol}")
        self._debug(f"Queued init sequence with protocol {self._protocol}")
        self._emit(EVENT_CONNECTED)

    def disconnect(self) -> None:
        """Stop timers, drop pending commands and close the transport.

        Both timers are cancelled before this returns. Idempotent.
        """
        with self._state_lock:
            if self._state == ConnectionState.DISCONNECTED and self._transport is None:
                return

            logger.info("Disconnecting from adapter...")

            self._scheduler.stop()
            self._stop_drain()
            self._queue.clear()
            self._close_transport()

            self._state = ConnectionState.DISCONNECTED
            logger.info("Disconnected")

        self._debug("Disconnected")

    def reconnect(self) -> None:
        """Reconnect using the last known port/baud.

        Raises:
            TransportFailure: If no port was ever used or reconnection fails
        """
        if self._last_port is None:
            raise TransportFailure("Cannot reconnect: no previous port")

        logger.info(f"Reconnecting to {self._last_port} at {self._last_baud} baud...")
        self.disconnect()
        self.connect(port=self._last_port, baud=self._last_baud)

    def _close_transport(self, exclude: Optional[ByteTransport] = None) -> None:
        transport, self._transport = self._transport, None
        if transport is None or transport is exclude:
            return

        transport.set_data_handler(None)
        try:
            transport.close()
        except Exception as e:
            logger.warning(f"Error closing transport: {e}")

    def _stop_drain(self) -> bool:
        task = self._drain_task
        if task is None:
            return True
        # A drain thread stuck in write() keeps its handle until it exits
        if task.stop():
            self._drain_task = None
            return True
        return False

    # ========================================================================
    # Protocol Selection
    # ========================================================================

    def set_protocol(self, protocol_id: Union[str, int]) -> None:
        """Set the ATSP protocol number (0 = automatic search).

        Takes effect on the next connect; when already connected the ATSP
        command is queued right away.

        Raises:
            InvalidProtocol: If protocol_id is not a single digit 0-9
        """
        value = str(protocol_id)
        if not protocol.RE_PROTOCOL.match(value):
            raise InvalidProtocol(f"Protocol must be a single digit 0-9, got {protocol_id!r}")

        self._protocol = value
        logger.info(f"Protocol set to {value}")

        if self.is_connected():
            self.write(protocol.make_protocol_cmd(value))

    def get_protocol(self) -> str:
        """Current ATSP protocol number."""
        return self._protocol

    # ========================================================================
    # Requests
    # ========================================================================

    def write(self, message: str, replies: int = 0) -> bool:
        """Queue a command for the adapter.

        Args:
            message: AT command or PID request, without CR (e.g., "ATRV", "010C")
            replies: Expected reply count appended to the command (0 = none)

        Returns:
            True if queued. On NotConnected, QueueOverflow or InvalidCommand
            the command is dropped, an `error` event is emitted and False
            returned.
        """
        try:
            self._queue.enqueue(message, replies)
        except ELM327Error as e:
            self._report(e)
            return False
        return True

    def request_value_by_name(self, name: str) -> bool:
        """Queue a one-off request for a PID by table name (e.g., "rpm").

        Returns:
            True if queued; False (with an `error` event) if the name is
            unknown or the command could not be queued
        """
        try:
            command = pids.command_for_name(name, self._table)
        except ELM327Error as e:
            self._report(e)
            return False
        return self.write(command)

    def drain_tick(self) -> bool:
        """Write the oldest queued command to the transport.

        Called every drain period by the drain task. Consecutive write
        failures up to the configured limit are reported individually;
        reaching the limit is treated as a lost connection.

        Returns:
            True if a command was written
        """
        if not self.is_connected():
            return False

        transport = self._transport
        if transport is None:
            return False

        command = self._queue.pop()
        if command is None:
            return False

        # Only transport errors count toward connection loss
        data = command.encode("ascii")
        try:
            transport.write(data)
        except Exception as e:
            self._write_failures += 1
            if isinstance(e, TransportFailure):
                self._report(e)
            else:
                self._report(TransportFailure(f"Error while writing {command!r}: {e}"))

            if self._write_failures >= self._config.max_write_failures:
                self._handle_connection_lost()
            return False

        self._write_failures = 0
        self._debug(f"Sent {command!r}")
        return True

    def _handle_connection_lost(self) -> None:
        logger.error(
            f"{self._write_failures} consecutive write failures, connection is probably lost"
        )
        self._state = ConnectionState.LOST
        self._scheduler.clear()
        self._scheduler.stop()
        self._stop_drain()
        self._report(
            TransportFailure("OBD-II listeners deactivated, connection is probably lost")
        )

    # ========================================================================
    # Incoming Data
    # ========================================================================

    def handle_data(self, chunk: Union[bytes, str]) -> List[Reply]:
        """Transport callback: frame a chunk and decode every completed reply.

        Frames that fail to decode are reported through the `error` event
        and dropped; the rest are buffered and emitted as `data_received`.

        Returns:
            Replies decoded from this chunk, in arrival order
        """
        replies: List[Reply] = []
        with self._rx_lock:
            for frame in self._framer.feed(chunk):
                try:
                    reply = parsing.parse_reply(frame, self._table)
                except (MalformedFrame, UnsupportedWidth) as e:
                    self._report(e)
                    continue

                self._buffer.record(reply)
                replies.append(reply)
                self._emit(EVENT_DATA_RECEIVED, reply)

        return replies

    # ========================================================================
    # Polling
    # ========================================================================

    def add_poller(self, name: str) -> None:
        """Add a PID to continuous polling.

        Raises:
            UnknownPID: If name is not in the PID table
        """
        self._scheduler.add(name)

    def remove_poller(self, name: str) -> None:
        """Remove a PID from continuous polling.

        Raises:
            UnknownPID: If name is not in the PID table
        """
        self._scheduler.remove(name)

    def remove_all_pollers(self) -> None:
        """Clear the poller set. A running poller keeps ticking with nothing to send."""
        self._scheduler.clear()

    def start_polling(self, interval_s: Optional[float] = None) -> float:
        """Start (or restart) polling all active PIDs.

        Args:
            interval_s: Seconds between rounds. Defaults to two drain periods
                        per active PID. Shorter intervals than one drain
                        period per PID will overflow the queue.

        Returns:
            Interval in use

        Raises:
            RuntimeError: If the previous polling thread is still mid-tick
        """
        return self._scheduler.start(interval_s)

    def stop_polling(self) -> None:
        """Stop polling. Idempotent."""
        self._scheduler.stop()

    def poll_once(self) -> int:
        """Queue one round of polls immediately. Returns commands queued."""
        return self._scheduler.tick()

    @property
    def active_pollers(self) -> List[str]:
        """Commands currently polled, in order (e.g., ["010C", "010D"])."""
        return self._scheduler.active

    @property
    def poller_state(self) -> PollerState:
        return self._scheduler.state

    # ========================================================================
    # Data Access
    # ========================================================================

    def read_buffer_snapshot(self) -> List[Reading]:
        """Copy of buffered readings, ordered oldest to newest."""
        return self._buffer.snapshot()

    def read_latest(self, name: Optional[str] = None) -> Optional[Reading]:
        """Most recent reading (optionally for one PID name), or None."""
        return self._buffer.latest(name)

    def clear_buffer(self) -> None:
        """Clear all buffered readings."""
        self._buffer.clear()

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._state

    @property
    def queue_length(self) -> int:
        """Number of commands waiting to be written."""
        return len(self._queue)

    def pending_commands(self) -> List[str]:
        """Copy of queued commands as they will be written, oldest first."""
        return self._queue.snapshot()

    def is_connected(self) -> bool:
        """True while connected and the drain loop is allowed to write."""
        return self._state == ConnectionState.CONNECTED and self._transport is not None
