"""Byte-stream transport layer between the reader and the adapter."""

import logging
import threading
from typing import Callable, Optional, Protocol

from elm327_lib import protocol
from elm327_lib.errors import TransportFailure

logger = logging.getLogger(__name__)

DataHandler = Callable[[bytes], None]


class ByteTransport(Protocol):
    """What OBDReader needs from a connection to the adapter.

    Implementations deliver received chunks, in order and one at a time, to
    the handler installed with set_data_handler().
    """

    def write(self, data: bytes) -> None:
        """Send bytes to the adapter. Raises on failure."""
        ...

    def set_data_handler(self, handler: Optional[DataHandler]) -> None:
        """Install (or remove, with None) the callback for received chunks."""
        ...

    def close(self) -> None:
        """Close the connection."""
        ...

    @property
    def is_open(self) -> bool:
        """Check if connection is open."""
        ...


class SerialLike(Protocol):
    """Protocol for serial port interface (allows test doubles)."""

    def write(self, data: bytes) -> Optional[int]:
        ...

    def read(self, size: int = 1) -> bytes:
        ...

    def flush(self) -> None:
        ...

    def close(self) -> None:
        ...

    @property
    def in_waiting(self) -> int:
        ...

    @property
    def is_open(self) -> bool:
        ...


class SerialTransport:
    """ByteTransport over pyserial (USB serial or a bound RFCOMM device).

    A background thread reads whatever bytes are available and hands each
    chunk to the data handler. Pairing and binding the Bluetooth device to a
    serial node (e.g., `rfcomm bind`) happens outside this library.
    """

    def __init__(self, serial_port: SerialLike) -> None:
        """Initialize transport with an open serial port instance.

        Args:
            serial_port: Object implementing SerialLike protocol
                        (e.g., serial.Serial or a test double)
        """
        self._port = serial_port
        self._handler: Optional[DataHandler] = None
        self._reader_thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    @classmethod
    def open(
        cls,
        port: str,
        baud: int = protocol.DEFAULT_BAUD,
        timeout_s: float = protocol.READ_TIMEOUT_S,
    ) -> "SerialTransport":
        """Open a real serial port (requires pyserial).

        Args:
            port: Serial device name (e.g., "/dev/rfcomm0", "/dev/ttyUSB0")
            baud: Baud rate. Default 38400 matches ELM327 factory setting.
            timeout_s: Read timeout in seconds; bounds how long close() waits
                       for the reader thread.

        Returns:
            SerialTransport wrapping the opened port

        Raises:
            TransportFailure: If port cannot be opened
        """
        try:
            import serial  # type: ignore
        except ImportError as e:
            raise TransportFailure("pyserial not installed. Run: pip install pyserial") from e

        try:
            ser = serial.Serial(
                port=port,
                baudrate=baud,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=timeout_s,
                rtscts=False,
                dsrdtr=False,
                xonxoff=False,
            )
            logger.info(f"Opened serial port {port} at {baud} baud, timeout={timeout_s}s")
            return cls(ser)
        except Exception as e:
            raise TransportFailure(f"Failed to open {port} at {baud} baud: {e}") from e

    @property
    def is_open(self) -> bool:
        """Check if port is currently open."""
        return self._port.is_open

    def write(self, data: bytes) -> None:
        """Write raw bytes to the port.

        Raises:
            TransportFailure: If the port is closed or the write fails
        """
        if not self._port.is_open:
            raise TransportFailure("Serial port is not open")

        try:
            self._port.write(data)
            self._port.flush()
            logger.debug(f"Sent {len(data)} bytes: {data!r}")
        except Exception as e:
            raise TransportFailure(f"Failed to write to port: {e}") from e

    def set_data_handler(self, handler: Optional[DataHandler]) -> None:
        """Install the chunk callback and start the reader thread if needed."""
        self._handler = handler
        if handler is not None and self._reader_thread is None:
            self._stop_event.clear()
            self._reader_thread = threading.Thread(
                target=self._reader_loop,
                name="SerialTransportReader",
                daemon=True,
            )
            self._reader_thread.start()
            logger.debug("Started serial reader thread")

    def close(self) -> None:
        """Stop the reader thread and close the port."""
        self._stop_event.set()
        if self._reader_thread is not None:
            if self._reader_thread is not threading.current_thread():
                self._reader_thread.join(timeout=2.0)
            self._reader_thread = None

        if self._port.is_open:
            self._port.close()
            logger.info("Closed serial port")

    def _reader_loop(self) -> None:
        """Background thread: read available bytes, push them to the handler."""
        logger.info(f"Serial reader loop started (thread {threading.get_ident()})")

        while not self._stop_event.is_set():
            try:
                chunk = self._port.read(self._port.in_waiting or 1)
            except Exception as e:
                if self._stop_event.is_set():
                    break
                logger.error(f"Serial read failed: {e}", exc_info=True)
                # Port is gone; the reader reports it on the next write
                break

            if not chunk:
                continue

            logger.debug(f"Received {len(chunk)} bytes: {chunk!r}")
            handler = self._handler
            if handler is not None:
                try:
                    handler(chunk)
                except Exception as e:
                    logger.error(f"Error in data handler: {e}", exc_info=True)

        logger.info("Serial reader loop stopped")
