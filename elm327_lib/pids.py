"""Default PID table and table lookups.

Standard mode 01 PIDs (SAE J1979) plus the mode 03 stored-DTC request. Decode
formulas receive the reply's data bytes as 2-digit hex strings, in wire order
(A, B, C, ...), and return the value in the entry's unit.

Any sequence of PIDEntry records can stand in for PIDS; the lookups below take
the table as an argument.
"""

from typing import Any, Dict, List, Optional, Sequence

from elm327_lib import protocol
from elm327_lib.errors import UnknownPID
from elm327_lib.models import PIDEntry


def _u8(a: str) -> int:
    return int(a, 16)


def _u16(a: str, b: str) -> int:
    return int(a, 16) * 256 + int(b, 16)


# ============================================================================
# Decode Formulas
# ============================================================================


def percent(a: str) -> float:
    return _u8(a) * 100 / 255


def temperature(a: str) -> int:
    return _u8(a) - 40


def fuel_trim(a: str) -> float:
    return (_u8(a) - 128) * 100 / 128


def fuel_rail_pressure(a: str) -> int:
    return _u8(a) * 3


def raw_byte(a: str) -> int:
    return _u8(a)


def raw_word(a: str, b: str) -> int:
    return _u16(a, b)


def rpm(a: str, b: str) -> float:
    return _u16(a, b) / 4


def timing_advance(a: str) -> float:
    return _u8(a) / 2 - 64


def air_flow_rate(a: str, b: str) -> float:
    return _u16(a, b) / 100


def control_module_voltage(a: str, b: str) -> float:
    return _u16(a, b) / 1000


def engine_fuel_rate(a: str, b: str) -> float:
    return _u16(a, b) / 20


def supported_pids(a: str, b: str, c: str, d: str) -> List[str]:
    """Decode the 00 bitmap into the list of supported PIDs 01-20."""
    bits = (_u16(a, b) << 16) | _u16(c, d)
    return [f"{i + 1:02X}" for i in range(32) if bits & (1 << (31 - i))]


def monitor_status(a: str, b: str, c: str, d: str) -> Dict[str, Any]:
    """Decode PID 01: MIL lamp state and number of stored DTCs."""
    first = _u8(a)
    return {"mil": bool(first & 0x80), "count": first & 0x7F}


def o2_sensor_wide(a: str, b: str, c: str, d: str) -> Dict[str, float]:
    """Decode wide-band O2 sensor: equivalence ratio and voltage."""
    return {
        "ratio": _u16(a, b) * 2 / 65536,
        "voltage": _u16(c, d) * 8 / 65536,
    }


_DTC_SYSTEMS = "PCBU"


def trouble_codes(*tokens: str) -> List[str]:
    """Decode a mode 03 reply into DTC strings such as "P0133".

    Each code occupies two bytes; all-zero pairs are padding.
    """
    codes = []
    for i in range(0, len(tokens) - 1, 2):
        first, second = _u8(tokens[i]), _u8(tokens[i + 1])
        if first == 0 and second == 0:
            continue
        system = _DTC_SYSTEMS[first >> 6]
        codes.append(f"{system}{(first >> 4) & 0x03}{first & 0x0F:X}{second:02X}")
    return codes


# ============================================================================
# Table
# ============================================================================

_M01 = protocol.MODE_LIVE_DATA

PIDS: List[PIDEntry] = [
    PIDEntry("pidsupp0", _M01, "00", 4, supported_pids, "PIDs supported 01-20"),
    PIDEntry("dtc_cnt", _M01, "01", 4, monitor_status, "Monitor status since DTCs cleared"),
    PIDEntry("load_pct", _M01, "04", 1, percent, "Calculated engine load", "%"),
    PIDEntry("temp", _M01, "05", 1, temperature, "Engine coolant temperature", "°C"),
    PIDEntry("shrtft13", _M01, "06", 1, fuel_trim, "Short term fuel trim bank 1", "%"),
    PIDEntry("longft13", _M01, "07", 1, fuel_trim, "Long term fuel trim bank 1", "%"),
    PIDEntry("shrtft24", _M01, "08", 1, fuel_trim, "Short term fuel trim bank 2", "%"),
    PIDEntry("longft24", _M01, "09", 1, fuel_trim, "Long term fuel trim bank 2", "%"),
    PIDEntry("frp", _M01, "0A", 1, fuel_rail_pressure, "Fuel pressure", "kPa"),
    PIDEntry("map", _M01, "0B", 1, raw_byte, "Intake manifold absolute pressure", "kPa"),
    PIDEntry("rpm", _M01, "0C", 2, rpm, "Engine RPM", "rev/min"),
    PIDEntry("vss", _M01, "0D", 1, raw_byte, "Vehicle speed", "km/h"),
    PIDEntry("sparkadv", _M01, "0E", 1, timing_advance, "Timing advance", "° before TDC"),
    PIDEntry("iat", _M01, "0F", 1, temperature, "Intake air temperature", "°C"),
    PIDEntry("maf", _M01, "10", 2, air_flow_rate, "Mass air flow rate", "g/s"),
    PIDEntry("throttlepos", _M01, "11", 1, percent, "Absolute throttle position", "%"),
    PIDEntry("runtm", _M01, "1F", 2, raw_word, "Run time since engine start", "s"),
    PIDEntry("mil_dist", _M01, "21", 2, raw_word, "Distance travelled with MIL on", "km"),
    PIDEntry("lambda11", _M01, "24", 4, o2_sensor_wide, "O2 sensor 1 equivalence ratio"),
    PIDEntry("egr_pct", _M01, "2C", 1, percent, "Commanded EGR", "%"),
    PIDEntry("fli", _M01, "2F", 1, percent, "Fuel level input", "%"),
    PIDEntry("clr_dist", _M01, "31", 2, raw_word, "Distance since codes cleared", "km"),
    PIDEntry("baro", _M01, "33", 1, raw_byte, "Barometric pressure", "kPa"),
    PIDEntry("vpwr", _M01, "42", 2, control_module_voltage, "Control module voltage", "V"),
    PIDEntry("aat", _M01, "46", 1, temperature, "Ambient air temperature", "°C"),
    PIDEntry("eot", _M01, "5C", 1, temperature, "Engine oil temperature", "°C"),
    PIDEntry("enginefrate", _M01, "5E", 2, engine_fuel_rate, "Engine fuel rate", "L/h"),
    PIDEntry(
        "requestdtc",
        protocol.MODE_REQUEST_DTC,
        None,
        protocol.DTC_RESPONSE_BYTES,
        trouble_codes,
        "Request stored trouble codes",
    ),
]


# ============================================================================
# Lookups
# ============================================================================


def get_pid_by_name(name: str, table: Sequence[PIDEntry] = PIDS) -> PIDEntry:
    """Find the table entry with the given name.

    Raises:
        UnknownPID: If no entry has that name
    """
    for entry in table:
        if entry.name == name:
            return entry
    raise UnknownPID(f"No PID named {name!r} in table")


def command_for_name(name: str, table: Sequence[PIDEntry] = PIDS) -> str:
    """Resolve a PID name to the command body sent to the adapter (e.g., "010C").

    Raises:
        UnknownPID: If no entry has that name
    """
    return get_pid_by_name(name, table).command


def find_by_pid(
    pid: str, table: Sequence[PIDEntry] = PIDS, mode: str = protocol.MODE_LIVE_DATA
) -> Optional[PIDEntry]:
    """First entry of the given mode whose pid matches (case-insensitive)."""
    pid = pid.upper()
    for entry in table:
        if entry.mode == mode and entry.pid is not None and entry.pid.upper() == pid:
            return entry
    return None


def find_by_mode(mode: str, table: Sequence[PIDEntry] = PIDS) -> Optional[PIDEntry]:
    """First entry registered for a mode that carries no PID (e.g., "03")."""
    for entry in table:
        if entry.mode == mode and entry.pid is None:
            return entry
    return None
