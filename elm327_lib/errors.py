"""Custom exceptions for the ELM327 protocol library."""


class ELM327Error(Exception):
    """Base exception for all ELM327 library errors."""

    pass


class NotConnected(ELM327Error):
    """Raised when a command is queued while no adapter connection is established."""

    pass


class QueueOverflow(ELM327Error):
    """Raised when the outbound command queue is at capacity. The command is dropped."""

    pass


class MalformedFrame(ELM327Error):
    """Raised when a reply frame contains non-hex tokens or too few data bytes."""

    pass


class UnsupportedWidth(ELM327Error):
    """Raised when a PID table entry declares a byte width other than 1, 2, 4 or 8."""

    pass


class UnknownPID(ELM327Error):
    """Raised when a PID name cannot be found in the PID table."""

    pass


class InvalidProtocol(ELM327Error):
    """Raised when the protocol selector is not a single digit 0-9."""

    pass


class TransportFailure(ELM327Error):
    """Raised when the byte-stream transport fails (port closed, write error, etc)."""

    pass


class InvalidCommand(ELM327Error, ValueError):
    """Raised when a command cannot be sent as-is (non-ASCII text, reply count not 0-9)."""

    pass
