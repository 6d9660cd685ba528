"""Wire protocol constants and command builders for ELM327-class OBD-II adapters.

Command set reference: ELM327 datasheet (AT commands) and SAE J1979 for the
OBD-II service/PID encoding.
"""

import re
from typing import Final

from elm327_lib.errors import InvalidCommand

# ============================================================================
# Line Termination / Framing
# ============================================================================

# Adapter expects CR (0x0D) after every command
COMMAND_TERMINATOR: Final[str] = "\r"

# Adapter prints '>' when it is ready for the next command
PROMPT: Final[str] = ">"

# Lines inside one prompt-delimited reply are separated by CR
MESSAGE_DELIMITER: Final[str] = "\r"

# ============================================================================
# Literal Status Replies
# ============================================================================

STATUS_NO_DATA: Final[str] = "NO DATA"
STATUS_OK: Final[str] = "OK"
STATUS_UNKNOWN_COMMAND: Final[str] = "?"
STATUS_UNABLE_TO_CONNECT: Final[str] = "UNABLE TO CONNECT"
STATUS_SEARCHING: Final[str] = "SEARCHING..."

STATUS_TOKENS: Final[frozenset[str]] = frozenset(
    {
        STATUS_NO_DATA,
        STATUS_OK,
        STATUS_UNKNOWN_COMMAND,
        STATUS_UNABLE_TO_CONNECT,
        STATUS_SEARCHING,
    }
)

# ============================================================================
# OBD-II Service Codes (2 hex digits, as sent on the wire)
# ============================================================================

MODE_LIVE_DATA: Final[str] = "01"  # Show current data
MODE_REQUEST_DTC: Final[str] = "03"  # Show stored diagnostic trouble codes

# Positive response = request mode + 0x40
RESPONSE_LIVE_DATA: Final[str] = "41"
RESPONSE_DTC: Final[str] = "43"

# Most data bytes a mode 03 reply carries (three codes); CAN replies send fewer
DTC_RESPONSE_BYTES: Final[int] = 6

# Byte widths a PID table entry may declare
SUPPORTED_WIDTHS: Final[frozenset[int]] = frozenset({1, 2, 4, 8})

# ============================================================================
# AT Commands
# ============================================================================

AT_RESET: Final[str] = "ATZ"
AT_LINEFEEDS_OFF: Final[str] = "ATL0"
AT_SPACES_OFF: Final[str] = "ATS0"
AT_HEADERS_OFF: Final[str] = "ATH0"
AT_ECHO_OFF: Final[str] = "ATE0"
# Adaptive timing 2: aggressive timeout learning, big win on slow ECUs
AT_ADAPTIVE_TIMING: Final[str] = "ATAT2"
AT_SET_PROTOCOL_PREFIX: Final[str] = "ATSP"


def make_protocol_cmd(protocol: str) -> str:
    """Build the select-protocol command: ATSP<digit>

    Args:
        protocol: Single digit 0-9 (0 = automatic)

    Returns:
        Command string (no CR appended - queue handles termination)
    """
    return f"{AT_SET_PROTOCOL_PREFIX}{protocol}"


def make_init_sequence(protocol: str) -> tuple[str, ...]:
    """Adapter configuration issued on every successful connect, in send order."""
    return (
        AT_RESET,
        AT_LINEFEEDS_OFF,
        AT_SPACES_OFF,
        AT_HEADERS_OFF,
        AT_ECHO_OFF,
        AT_ADAPTIVE_TIMING,
        make_protocol_cmd(protocol),
    )


def make_command(body: str, expected_replies: int = 0) -> str:
    """Format a command for the wire: <body>[<replies>]CR

    The optional reply count lets the adapter return as soon as that many
    responses arrived instead of waiting for its timeout.

    Args:
        body: AT command or mode+PID hex text (e.g., "ATZ", "010C")
        expected_replies: 0 for "wait for timeout", otherwise 1-9

    Returns:
        Command string terminated with CR

    Raises:
        InvalidCommand: If expected_replies is not a single digit or body
                        is not plain ASCII
    """
    if not (0 <= expected_replies <= 9):
        raise InvalidCommand(f"expected_replies must be 0-9, got {expected_replies}")

    if not body.isascii():
        raise InvalidCommand(f"Command must be ASCII text, got {body!r}")

    suffix = str(expected_replies) if expected_replies else ""
    return f"{body}{suffix}{COMMAND_TERMINATOR}"


# ============================================================================
# Timing / Capacity
# ============================================================================

# One command leaves the queue per drain tick. The adapter and radio link only
# sustain a handful of commands per second; 20/s works with adaptive timing.
DRAIN_PERIOD_S: Final[float] = 0.05

QUEUE_CAPACITY: Final[int] = 256

# Consecutive transport write failures that count as a lost connection
MAX_CONSECUTIVE_WRITE_FAILURES: Final[int] = 3

# Serial read timeout for the background reader thread
READ_TIMEOUT_S: Final[float] = 0.1

# Longest stop() waits for a timer thread stuck in its callback
THREAD_JOIN_TIMEOUT_S: Final[float] = 5.0

# Factory default baud rate of most ELM327 clones
DEFAULT_BAUD: Final[int] = 38400

DEFAULT_PROTOCOL: Final[str] = "0"  # Automatic protocol search

# ============================================================================
# Regular Expressions
# ============================================================================

RE_PROTOCOL: Final[re.Pattern[str]] = re.compile(r"^[0-9]$")

# A byte token on the wire: two hex digits, either case
RE_HEX_TOKEN: Final[re.Pattern[str]] = re.compile(r"^[0-9A-Fa-f]{2}$")

# A hex data line, possibly spaced ("41 0C 1A F8")
RE_HEX_LINE: Final[re.Pattern[str]] = re.compile(r"^[0-9A-Fa-f]+(?: +[0-9A-Fa-f]+)*$")
