"""
elm327_lib - Protocol engine for ELM327-class OBD-II adapters.

Queues and throttles AT/PID commands, frames the adapter's prompt-delimited
replies and decodes them into typed readings using a PID table.
"""

from elm327_lib.errors import (
    ELM327Error,
    InvalidCommand,
    InvalidProtocol,
    MalformedFrame,
    NotConnected,
    QueueOverflow,
    TransportFailure,
    UnknownPID,
    UnsupportedWidth,
)
from elm327_lib.models import (
    ConnectionState,
    DtcReply,
    PIDEntry,
    PidReply,
    PollerState,
    Reading,
    ReaderConfig,
    StatusReply,
    UnparsedReply,
    UnrecognizedPidReply,
)
from elm327_lib.pids import PIDS
from elm327_lib.reader import OBDReader

__version__ = "0.1.0"

__all__ = [
    "OBDReader",
    "ReaderConfig",
    "PIDS",
    "PIDEntry",
    "Reading",
    "ConnectionState",
    "PollerState",
    "StatusReply",
    "PidReply",
    "UnrecognizedPidReply",
    "DtcReply",
    "UnparsedReply",
    "ELM327Error",
    "InvalidCommand",
    "NotConnected",
    "QueueOverflow",
    "MalformedFrame",
    "UnsupportedWidth",
    "UnknownPID",
    "InvalidProtocol",
    "TransportFailure",
]
