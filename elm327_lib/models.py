"""Data models for the ELM327 protocol library."""

import os
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional, Union

from elm327_lib import protocol as wire


class ConnectionState(Enum):
    """Reader connection states."""

    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    LOST = "lost"  # Transport failed during drain; caller must reconnect


class PollerState(Enum):
    """Poller scheduler states."""

    IDLE = "idle"
    POLLING = "polling"


@dataclass(frozen=True)
class PIDEntry:
    """One record of the PID table.

    Attributes:
        name: Lookup key used by request_value_by_name / add_poller (e.g., "rpm").
        mode: OBD-II service as 2 hex digits (e.g., "01").
        pid: Parameter ID as 2 hex digits, or None for modes without one (mode 03).
        bytes: Number of data bytes the reply carries (1, 2, 4 or 8 for mode 01).
        decode: Formula called with exactly `bytes` hex tokens, returns the value.
        description: Human readable label.
        unit: Unit of the decoded value ("" if dimensionless).
    """

    name: str
    mode: str
    pid: Optional[str]
    bytes: int
    decode: Callable[..., Any]
    description: str = ""
    unit: str = ""

    @property
    def command(self) -> str:
        """Command body sent to the adapter: mode + pid, or just mode."""
        if self.pid is not None:
            return self.mode + self.pid
        return self.mode


# ============================================================================
# Replies
# ============================================================================


@dataclass(frozen=True)
class StatusReply:
    """Literal adapter status such as "OK" or "NO DATA"."""

    value: str

    def to_dict(self) -> Dict[str, Any]:
        return {"value": self.value}


@dataclass(frozen=True)
class PidReply:
    """Mode 01 reply for a PID found in the table."""

    mode: str
    pid: str
    name: str
    value: Any

    def to_dict(self) -> Dict[str, Any]:
        return {"mode": self.mode, "pid": self.pid, "name": self.name, "value": self.value}


@dataclass(frozen=True)
class UnrecognizedPidReply:
    """Reply with a known response code but no matching table entry."""

    mode: str
    pid: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"mode": self.mode}
        if self.pid is not None:
            data["pid"] = self.pid
        return data


@dataclass(frozen=True)
class DtcReply:
    """Mode 03 reply decoded with the table's DTC entry."""

    mode: str
    name: str
    value: Any

    def to_dict(self) -> Dict[str, Any]:
        return {"mode": self.mode, "name": self.name, "value": self.value}


@dataclass(frozen=True)
class UnparsedReply:
    """Frame whose first byte is not a response code this library decodes."""

    raw: str

    def to_dict(self) -> Dict[str, Any]:
        return {}


Reply = Union[StatusReply, PidReply, UnrecognizedPidReply, DtcReply, UnparsedReply]


@dataclass
class Reading:
    """A decoded reply with the UTC time it was received.

    Attributes:
        ts: UTC timestamp when the frame was decoded.
        reply: Decoded reply variant.
    """

    ts: datetime
    reply: Reply


# ============================================================================
# Configuration
# ============================================================================


@dataclass
class ReaderConfig:
    """Tunables for OBDReader.

    Attributes:
        port: Serial device node (e.g., "/dev/rfcomm0"). None when a transport
              is injected directly.
        baud: Serial baud rate.
        protocol: ATSP protocol selector, single digit (0 = automatic).
        drain_period_s: Seconds between command queue drain ticks.
        queue_capacity: Maximum number of pending commands.
        max_write_failures: Consecutive write failures treated as connection loss.
        buffer_size: Number of decoded readings kept for read_buffer_snapshot().
    """

    port: Optional[str] = None
    baud: int = wire.DEFAULT_BAUD
    protocol: str = wire.DEFAULT_PROTOCOL
    drain_period_s: float = wire.DRAIN_PERIOD_S
    queue_capacity: int = wire.QUEUE_CAPACITY
    max_write_failures: int = wire.MAX_CONSECUTIVE_WRITE_FAILURES
    buffer_size: int = 1000

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if not wire.RE_PROTOCOL.match(str(self.protocol)):
            raise ValueError(f"protocol must be a single digit 0-9, got {self.protocol!r}")
        self.protocol = str(self.protocol)

        if self.baud <= 0:
            raise ValueError(f"baud must be positive, got {self.baud}")

        if self.drain_period_s <= 0:
            raise ValueError(f"drain_period_s must be positive, got {self.drain_period_s}")

        if self.queue_capacity <= 0:
            raise ValueError(f"queue_capacity must be positive, got {self.queue_capacity}")

        if self.max_write_failures <= 0:
            raise ValueError(
                f"max_write_failures must be positive, got {self.max_write_failures}"
            )

        if self.buffer_size <= 0:
            raise ValueError(f"buffer_size must be positive, got {self.buffer_size}")

    @classmethod
    def from_env(cls) -> "ReaderConfig":
        """Build a config from ELM327_* environment variables.

        Reads ELM327_PORT, ELM327_BAUD, ELM327_PROTOCOL and ELM327_DRAIN_MS;
        anything unset keeps its default.
        """
        drain_ms = os.getenv("ELM327_DRAIN_MS")
        return cls(
            port=os.getenv("ELM327_PORT"),
            baud=int(os.getenv("ELM327_BAUD", str(wire.DEFAULT_BAUD))),
            protocol=os.getenv("ELM327_PROTOCOL", wire.DEFAULT_PROTOCOL),
            drain_period_s=(
                int(drain_ms) / 1000.0 if drain_ms else wire.DRAIN_PERIOD_S
            ),
        )
