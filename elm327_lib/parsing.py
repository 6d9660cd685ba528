"""Pure functions for decoding framed adapter replies."""

import logging
from typing import List, Sequence

from elm327_lib import pids, protocol
from elm327_lib.errors import MalformedFrame, UnsupportedWidth
from elm327_lib.models import (
    DtcReply,
    PIDEntry,
    PidReply,
    Reply,
    StatusReply,
    UnparsedReply,
    UnrecognizedPidReply,
)

logger = logging.getLogger(__name__)


def split_hex_tokens(frame: str) -> List[str]:
    """Split a hex frame into upper-case 2-digit byte tokens.

    Whitespace anywhere in the frame is ignored, so "41 0c 1a f8" and
    "410C1AF8" give the same tokens.

    Args:
        frame: Reply text from the framer

    Returns:
        List of tokens, e.g. ["41", "0C", "1A", "F8"]

    Raises:
        MalformedFrame: If the frame is empty, has an odd number of digits,
                        or contains a non-hex character
    """
    compact = "".join(frame.split())
    if not compact:
        raise MalformedFrame("Empty frame")

    if len(compact) % 2:
        raise MalformedFrame(f"Odd number of hex digits in frame: {frame!r}")

    tokens = [compact[i : i + 2] for i in range(0, len(compact), 2)]
    for token in tokens:
        if not protocol.RE_HEX_TOKEN.match(token):
            raise MalformedFrame(f"Non-hex token {token!r} in frame: {frame!r}")

    return [token.upper() for token in tokens]


def _apply(entry: PIDEntry, data: Sequence[str], count: int, frame: str):
    """Call the entry's formula with exactly `count` data tokens."""
    if len(data) < count:
        raise MalformedFrame(
            f"{entry.name} needs {count} data bytes, got {len(data)} in frame: {frame!r}"
        )

    try:
        return entry.decode(*data[:count])
    except (ValueError, IndexError) as e:
        raise MalformedFrame(f"Failed to decode {entry.name} from frame: {frame!r}") from e


def parse_reply(frame: str, table: Sequence[PIDEntry] = pids.PIDS) -> Reply:
    """Decode one framed reply into a Reply variant.

    Dispatch:
        - Exact status token ("OK", "NO DATA", ...) -> StatusReply
        - 41 <pid> <data...>   -> PidReply, or UnrecognizedPidReply if the
                                  table has no mode 01 entry for <pid>
        - 43 <up to 6 bytes>   -> DtcReply via the table's mode 03 entry
        - any other first byte -> UnparsedReply (adapter banners included)

    Args:
        frame: One message produced by ResponseFramer.feed()
        table: PID table to decode against

    Returns:
        Reply variant

    Raises:
        MalformedFrame: Non-hex tokens, too few data bytes, or the decode
                        formula rejected the data
        UnsupportedWidth: Matching mode 01 entry declares a width other than
                          1, 2, 4 or 8
    """
    if frame in protocol.STATUS_TOKENS:
        return StatusReply(value=frame)

    # Banners and echoes ("ELM327 v1.5", "STOPPED") never reach the hex check
    code = "".join(frame.split())[:2].upper()
    if code not in (protocol.RESPONSE_LIVE_DATA, protocol.RESPONSE_DTC):
        return UnparsedReply(raw=frame)

    tokens = split_hex_tokens(frame)

    if code == protocol.RESPONSE_LIVE_DATA:
        if len(tokens) < 2:
            raise MalformedFrame(f"Mode 01 reply without PID byte: {frame!r}")

        pid = tokens[1]
        entry = pids.find_by_pid(pid, table)
        if entry is None:
            logger.debug(f"No table entry for PID {pid}, frame: {frame!r}")
            return UnrecognizedPidReply(mode=code, pid=pid)

        if entry.bytes not in protocol.SUPPORTED_WIDTHS:
            raise UnsupportedWidth(
                f"PID {entry.name} declares {entry.bytes} bytes; "
                f"supported: {sorted(protocol.SUPPORTED_WIDTHS)}"
            )

        value = _apply(entry, tokens[2:], entry.bytes, frame)
        return PidReply(mode=code, pid=pid, name=entry.name, value=value)

    # Mode 03: stored trouble codes
    entry = pids.find_by_mode(protocol.MODE_REQUEST_DTC, table)
    if entry is None:
        logger.debug(f"No table entry for mode {protocol.MODE_REQUEST_DTC}")
        return UnrecognizedPidReply(mode=code, pid=None)

    # CAN adapters send fewer than six bytes; "43 00" means no stored codes
    data = tokens[1 : 1 + protocol.DTC_RESPONSE_BYTES]
    value = _apply(entry, data, len(data), frame)
    return DtcReply(mode=code, name=entry.name, value=value)
