"""Tests for SerialTransport using an in-memory port."""

import threading
import time
from typing import List

import pytest

from elm327_lib.errors import TransportFailure
from elm327_lib.transport import SerialTransport


class PortDouble:
    """Minimal SerialLike port: reads return queued chunks, else time out."""

    def __init__(self) -> None:
        self.is_open = True
        self.written: List[bytes] = []
        self.flushes = 0
        self.fail_writes = False
        self._incoming = bytearray()
        self._lock = threading.Lock()

    def feed(self, data: bytes) -> None:
        with self._lock:
            self._incoming.extend(data)

    def write(self, data: bytes) -> int:
        if self.fail_writes:
            raise OSError("device disconnected")
        self.written.append(data)
        return len(data)

    def read(self, size: int = 1) -> bytes:
        with self._lock:
            if self._incoming:
                chunk = bytes(self._incoming[:size])
                del self._incoming[:size]
                return chunk
        time.sleep(0.01)
        return b""

    def flush(self) -> None:
        self.flushes += 1

    def close(self) -> None:
        self.is_open = False

    @property
    def in_waiting(self) -> int:
        with self._lock:
            return len(self._incoming)


def test_write_flushes() -> None:
    """Writes go straight to the port and are flushed."""
    port = PortDouble()
    transport = SerialTransport(port)

    transport.write(b"ATZ\r")

    assert port.written == [b"ATZ\r"]
    assert port.flushes == 1


def test_write_on_closed_port_raises() -> None:
    """Writing after close fails with TransportFailure."""
    port = PortDouble()
    transport = SerialTransport(port)
    transport.close()

    with pytest.raises(TransportFailure):
        transport.write(b"010C\r")


def test_write_error_wrapped() -> None:
    """Port exceptions surface as TransportFailure."""
    port = PortDouble()
    port.fail_writes = True
    transport = SerialTransport(port)

    with pytest.raises(TransportFailure, match="device disconnected"):
        transport.write(b"010C\r")


def test_reader_thread_delivers_chunks() -> None:
    """Bytes arriving on the port reach the data handler in order."""
    port = PortDouble()
    transport = SerialTransport(port)
    received = bytearray()
    done = threading.Event()

    def handler(chunk: bytes) -> None:
        received.extend(chunk)
        if received.endswith(b">"):
            done.set()

    transport.set_data_handler(handler)
    port.feed(b"41 0C 1A F8\r\r")
    port.feed(b">")

    assert done.wait(timeout=2.0)
    assert bytes(received) == b"41 0C 1A F8\r\r>"

    transport.close()
    assert not transport.is_open


def test_close_stops_reader_thread() -> None:
    """close() joins the reader thread before returning."""
    port = PortDouble()
    transport = SerialTransport(port)
    transport.set_data_handler(lambda chunk: None)
    assert "SerialTransportReader" in {t.name for t in threading.enumerate()}

    transport.close()

    assert "SerialTransportReader" not in {t.name for t in threading.enumerate()}
    assert not port.is_open


def test_handler_error_does_not_stop_reader() -> None:
    """An exception in the handler is logged and reading continues."""
    port = PortDouble()
    transport = SerialTransport(port)
    chunks: List[bytes] = []
    done = threading.Event()

    def handler(chunk: bytes) -> None:
        chunks.append(chunk)
        if len(chunks) == 1:
            raise RuntimeError("handler bug")
        done.set()

    transport.set_data_handler(handler)
    port.feed(b"OK")
    time.sleep(0.05)
    port.feed(b">")

    assert done.wait(timeout=2.0)
    transport.close()


def test_open_missing_port_raises() -> None:
    """A device node that does not exist fails with TransportFailure."""
    with pytest.raises(TransportFailure):
        SerialTransport.open("/dev/does-not-exist-elm327")
