"""Tests for OBDReader against the fake adapter."""

import threading
import time
from typing import Any, Callable, Iterator, List

import pytest

from elm327_lib.errors import (
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
    ReaderConfig,
    StatusReply,
)
from elm327_lib.reader import OBDReader
from fakes.fake_elm327 import FakeELM327

INIT_COMMANDS = ["ATZ\r", "ATL0\r", "ATS0\r", "ATH0\r", "ATE0\r", "ATAT2\r", "ATSP0\r"]


class Events:
    """Collects everything a reader emits."""

    def __init__(self, reader: OBDReader) -> None:
        self.connected = 0
        self.replies: List[Any] = []
        self.errors: List[Exception] = []
        self.debug: List[str] = []
        self._lock = threading.Lock()

        reader.on("connected", self._on_connected)
        reader.on("data_received", self._locked(self.replies.append))
        reader.on("error", self._locked(self.errors.append))
        reader.on("debug", self._locked(self.debug.append))

    def _on_connected(self) -> None:
        self.connected += 1

    def _locked(self, fn: Callable[[Any], None]) -> Callable[[Any], None]:
        def wrapper(arg: Any) -> None:
            with self._lock:
                fn(arg)

        return wrapper

    def reply_names(self) -> List[str]:
        with self._lock:
            return [r.name for r in self.replies if isinstance(r, PidReply)]


def drain_all(reader: OBDReader) -> int:
    """Run drain ticks until the queue is empty."""
    sent = 0
    while reader.drain_tick():
        sent += 1
    return sent


def wait_for(condition: Callable[[], bool], timeout: float = 2.0) -> bool:
    deadline = time.time() + timeout
    while time.time() < deadline:
        if condition():
            return True
        time.sleep(0.01)
    return condition()


@pytest.fixture
def reader() -> Iterator[OBDReader]:
    """Reader whose drain task never fires on its own; tests call drain_tick()."""
    obd = OBDReader(ReaderConfig(drain_period_s=60.0))
    yield obd
    obd.disconnect()


# ============================================================================
# Connection
# ============================================================================


def test_connect_queues_init_sequence(reader: OBDReader) -> None:
    """connect() queues the adapter setup and signals connected."""
    events = Events(reader)
    fake = FakeELM327()

    reader.connect(transport=fake)

    assert reader.state == ConnectionState.CONNECTED
    assert reader.is_connected()
    assert reader.pending_commands() == INIT_COMMANDS
    assert events.connected == 1
    # Nothing written until the drain loop runs
    assert fake.written == []


def test_init_sequence_drains_in_order(reader: OBDReader) -> None:
    """Each drain tick writes exactly one init command, in order."""
    events = Events(reader)
    fake = FakeELM327()
    reader.connect(transport=fake)

    assert drain_all(reader) == 7

    assert fake.commands == INIT_COMMANDS
    assert not fake.echo and not fake.spaces
    assert reader.queue_length == 0
    # ATL0, ATS0, ATH0, ATE0, ATAT2, ATSP0 acknowledge with OK
    assert events.replies.count(StatusReply(value="OK")) == 6
    assert events.errors == []


def test_protocol_applied_on_connect(reader: OBDReader) -> None:
    """The selected protocol is part of the init sequence."""
    fake = FakeELM327()
    reader.set_protocol("6")

    reader.connect(transport=fake)
    drain_all(reader)

    assert fake.commands[-1] == "ATSP6\r"
    assert fake.protocol == "6"


def test_double_connect_raises(reader: OBDReader) -> None:
    """Connecting twice is a caller error."""
    reader.connect(transport=FakeELM327())

    with pytest.raises(TransportFailure):
        reader.connect(transport=FakeELM327())


def test_connect_requires_port_or_transport(reader: OBDReader) -> None:
    """Without a port in the call or the config there is nothing to open."""
    with pytest.raises(ValueError):
        reader.connect()


def test_reconnect_requires_previous_port(reader: OBDReader) -> None:
    """reconnect() only works after a port-based connect."""
    with pytest.raises(TransportFailure):
        reader.reconnect()


def test_disconnect_closes_and_is_idempotent(reader: OBDReader) -> None:
    """disconnect() closes the transport and drops queued commands."""
    fake = FakeELM327()
    reader.connect(transport=fake)

    reader.disconnect()
    reader.disconnect()

    assert reader.state == ConnectionState.DISCONNECTED
    assert not fake.is_open
    assert reader.queue_length == 0
    assert reader.drain_tick() is False


# ============================================================================
# Requests
# ============================================================================


def test_write_then_drain_writes_exact_bytes(reader: OBDReader) -> None:
    """One enqueue plus one drain tick writes the command and shrinks the queue by one."""
    fake = FakeELM327()
    reader.connect(transport=fake)
    drain_all(reader)

    assert reader.write("0105", 1)
    assert reader.write("ATRV")
    assert reader.queue_length == 2

    assert reader.drain_tick()

    assert fake.written[-1] == b"01051\r"
    assert reader.queue_length == 1


def test_request_value_by_name_decodes_reply(reader: OBDReader) -> None:
    """A named request round-trips into a decoded reading."""
    events = Events(reader)
    fake = FakeELM327()
    reader.connect(transport=fake)
    drain_all(reader)

    assert reader.request_value_by_name("rpm")
    reader.drain_tick()

    assert fake.commands[-1] == "010C\r"
    assert events.replies[-1] == PidReply(mode="41", pid="0C", name="rpm", value=1726.0)
    assert reader.read_latest().reply == events.replies[-1]
    assert reader.read_latest("rpm").reply.value == 1726.0
    assert reader.read_latest("vss") is None


def test_request_dtcs(reader: OBDReader) -> None:
    """Mode 03 requests decode into trouble code lists."""
    events = Events(reader)
    reader.connect(transport=FakeELM327())
    drain_all(reader)

    reader.request_value_by_name("requestdtc")
    reader.drain_tick()

    assert events.replies[-1] == DtcReply(mode="43", name="requestdtc", value=["P0133"])


def test_unsupported_pid_reports_no_data(reader: OBDReader) -> None:
    """The adapter answers NO DATA for PIDs the car does not support."""
    events = Events(reader)
    reader.connect(transport=FakeELM327())
    drain_all(reader)

    reader.request_value_by_name("baro")
    reader.drain_tick()

    assert events.replies[-1] == StatusReply(value="NO DATA")


def test_request_unknown_name_emits_error(reader: OBDReader) -> None:
    """Unknown names are reported, not raised."""
    events = Events(reader)
    reader.connect(transport=FakeELM327())

    assert reader.request_value_by_name("flux_capacitor") is False
    assert isinstance(events.errors[-1], UnknownPID)


def test_write_when_not_connected(reader: OBDReader) -> None:
    """Writes before connect are dropped and reported."""
    events = Events(reader)

    assert reader.write("010C") is False
    assert isinstance(events.errors[-1], NotConnected)
    assert reader.queue_length == 0


def test_queue_overflow_reported(reader: OBDReader) -> None:
    """The 257th pending command is rejected; the queue stays at 256."""
    events = Events(reader)
    reader.connect(transport=FakeELM327())

    # 7 init commands are already queued
    for _ in range(256 - 7):
        assert reader.write("010C", 1)
    assert reader.queue_length == 256

    assert reader.write("010D", 1) is False

    assert isinstance(events.errors[-1], QueueOverflow)
    assert reader.queue_length == 256


# ============================================================================
# Protocol Selection
# ============================================================================


def test_set_protocol_validation(reader: OBDReader) -> None:
    """Only single digits are accepted."""
    assert reader.get_protocol() == "0"

    with pytest.raises(InvalidProtocol):
        reader.set_protocol("A")
    with pytest.raises(InvalidProtocol):
        reader.set_protocol("10")

    reader.set_protocol("3")
    assert reader.get_protocol() == "3"

    reader.set_protocol(5)
    assert reader.get_protocol() == "5"


def test_set_protocol_while_connected_queues_atsp(reader: OBDReader) -> None:
    """Changing protocol on a live connection sends ATSP right away."""
    reader.connect(transport=FakeELM327())
    drain_all(reader)

    reader.set_protocol("7")

    assert reader.pending_commands() == ["ATSP7\r"]


# ============================================================================
# Incoming Data
# ============================================================================


def test_chunked_replies_reassembled(reader: OBDReader) -> None:
    """Replies split into 3-byte chunks decode exactly once."""
    events = Events(reader)
    reader.connect(transport=FakeELM327(chunk_size=3))
    drain_all(reader)

    reader.request_value_by_name("rpm")
    reader.request_value_by_name("vss")
    drain_all(reader)

    assert events.reply_names() == ["rpm", "vss"]
    assert events.errors == []


def test_malformed_frame_reported_and_dropped(reader: OBDReader) -> None:
    """A bad frame is reported; the next frame in the same chunk still decodes."""
    events = Events(reader)
    fake = FakeELM327()
    reader.connect(transport=fake)

    fake.send("41 0C ZZ F8\r\r>41 0D 3C\r\r>")

    assert isinstance(events.errors[-1], MalformedFrame)
    assert events.replies[-1] == PidReply(mode="41", pid="0D", name="vss", value=60)


def test_unsupported_width_reported() -> None:
    """A table entry with an unroutable width is reported per frame."""
    table = [PIDEntry("odd", "01", "0C", 3, lambda *t: t)]
    obd = OBDReader(ReaderConfig(drain_period_s=60.0), table=table)
    events = Events(obd)
    fake = FakeELM327()
    obd.connect(transport=fake)

    fake.send("410C1AF800\r\r>")

    assert isinstance(events.errors[-1], UnsupportedWidth)
    assert events.replies == []
    obd.disconnect()


def test_handler_exception_does_not_break_reader(reader: OBDReader) -> None:
    """A failing subscriber is logged; other subscribers still run."""
    events = Events(reader)

    def explode(reply: Any) -> None:
        raise RuntimeError("subscriber bug")

    reader.on("data_received", explode)
    fake = FakeELM327()
    reader.connect(transport=fake)

    fake.send("41 0D 3C\r\r>")

    assert events.reply_names() == ["vss"]
    assert len(reader.read_buffer_snapshot()) == 1


def test_off_unsubscribes(reader: OBDReader) -> None:
    """Handlers removed with off() are no longer called."""
    seen = []
    reader.on("data_received", seen.append)
    reader.off("data_received", seen.append)
    fake = FakeELM327()
    reader.connect(transport=fake)

    fake.send("OK>")

    assert seen == []


def test_unknown_event_name_rejected(reader: OBDReader) -> None:
    """Typos in event names fail fast."""
    with pytest.raises(ValueError):
        reader.on("dataReceived", lambda reply: None)


def test_clear_buffer(reader: OBDReader) -> None:
    """clear_buffer() empties the reading buffer."""
    fake = FakeELM327()
    reader.connect(transport=fake)
    fake.send("OK>")
    assert reader.read_latest() is not None

    reader.clear_buffer()

    assert reader.read_buffer_snapshot() == []
    assert reader.read_latest() is None


# ============================================================================
# Polling
# ============================================================================


def test_poll_round_through_reader(reader: OBDReader) -> None:
    """A poll round queues one single-reply request per active PID."""
    reader.connect(transport=FakeELM327())
    drain_all(reader)
    for name in ("rpm", "vss", "temp"):
        reader.add_poller(name)

    assert reader.poll_once() == 3
    assert reader.pending_commands() == ["010C1\r", "010D1\r", "01051\r"]

    reader.remove_all_pollers()
    drain_all(reader)

    assert reader.poll_once() == 0
    assert reader.queue_length == 0


def test_add_unknown_poller_raises(reader: OBDReader) -> None:
    """Poller configuration is validated synchronously."""
    with pytest.raises(UnknownPID):
        reader.add_poller("flux_capacitor")


def test_default_polling_interval() -> None:
    """Three pollers at a 50 ms drain period poll every 300 ms."""
    obd = OBDReader()
    for name in ("rpm", "vss", "temp"):
        obd.add_poller(name)

    interval = obd.start_polling()

    assert interval == pytest.approx(0.3)
    assert obd.poller_state == PollerState.POLLING
    obd.stop_polling()
    assert obd.poller_state == PollerState.IDLE


# ============================================================================
# Connection Loss
# ============================================================================


def test_three_consecutive_write_failures_mean_connection_lost(reader: OBDReader) -> None:
    """Third failure in a row stops draining and polling."""
    events = Events(reader)
    fake = FakeELM327()
    reader.connect(transport=fake)
    drain_all(reader)
    reader.add_poller("rpm")
    reader.add_poller("vss")
    reader.start_polling(interval_s=60.0)

    fake.fail_writes = 3
    for _ in range(3):
        reader.write("010C")

    assert reader.drain_tick() is False
    assert reader.drain_tick() is False
    assert reader.state == ConnectionState.CONNECTED
    assert reader.drain_tick() is False

    assert reader.state == ConnectionState.LOST
    assert reader.active_pollers == []
    assert reader.poller_state == PollerState.IDLE
    assert len(events.errors) == 4
    assert all(isinstance(e, TransportFailure) for e in events.errors)

    # No automatic retry; writes are refused until reconnect
    assert reader.write("010C") is False
    assert isinstance(events.errors[-1], NotConnected)


def test_non_consecutive_failures_tolerated(reader: OBDReader) -> None:
    """A successful write resets the failure count."""
    fake = FakeELM327()
    reader.connect(transport=fake)
    drain_all(reader)

    for _ in range(5):
        reader.write("010C")

    fake.fail_writes = 2
    reader.drain_tick()
    reader.drain_tick()
    assert reader.drain_tick()
    fake.fail_writes = 2
    reader.drain_tick()
    reader.drain_tick()

    assert reader.state == ConnectionState.CONNECTED


def test_unsendable_commands_do_not_count_as_write_failures(reader: OBDReader) -> None:
    """Rejected commands are reported once and never reach the drain loop."""
    events = Events(reader)
    fake = FakeELM327()
    reader.connect(transport=fake)
    drain_all(reader)

    for _ in range(3):
        assert reader.write("AT\u00e9") is False
    assert reader.write("010C", 12) is False

    assert len(events.errors) == 4
    assert all(isinstance(e, InvalidCommand) for e in events.errors)
    assert reader.queue_length == 0

    assert reader.write("010D")
    assert reader.drain_tick()
    assert reader.state == ConnectionState.CONNECTED
    assert fake.commands[-1] == "010D\r"


def test_drain_keeps_command_when_transport_detached(
    reader: OBDReader, monkeypatch: pytest.MonkeyPatch
) -> None:
    """A drain tick racing a disconnect leaves the queued command in place."""
    reader.connect(transport=FakeELM327())
    monkeypatch.setattr(reader, "is_connected", lambda: True)
    monkeypatch.setattr(reader, "_transport", None)

    assert reader.drain_tick() is False
    assert reader.pending_commands() == INIT_COMMANDS


def test_reconnect_after_loss_with_new_transport(reader: OBDReader) -> None:
    """After a loss the application connects again with fresh state."""
    events = Events(reader)
    lost = FakeELM327()
    reader.connect(transport=lost)
    lost.fail_writes = 3
    for _ in range(3):
        reader.drain_tick()
    assert reader.state == ConnectionState.LOST

    fresh = FakeELM327()
    reader.connect(transport=fresh)

    assert not lost.is_open
    assert reader.state == ConnectionState.CONNECTED
    assert reader.pending_commands() == INIT_COMMANDS
    assert events.connected == 2


# ============================================================================
# Real Timers
# ============================================================================


def test_background_drain_and_polling() -> None:
    """With real timers, init drains and pollers produce decoded readings."""
    obd = OBDReader(ReaderConfig(drain_period_s=0.01))
    events = Events(obd)
    fake = FakeELM327()
    obd.connect(transport=fake)

    for name in ("rpm", "vss", "temp"):
        obd.add_poller(name)
    obd.start_polling()

    assert wait_for(lambda: {"rpm", "vss", "temp"} <= set(events.reply_names()))
    assert fake.commands[:7] == INIT_COMMANDS
    assert "010C1\r" in fake.commands

    obd.disconnect()


def test_disconnect_cancels_timers() -> None:
    """No writes happen once disconnect() has returned."""
    obd = OBDReader(ReaderConfig(drain_period_s=0.01))
    fake = FakeELM327()
    obd.connect(transport=fake)
    obd.add_poller("rpm")
    obd.start_polling(interval_s=0.02)
    assert wait_for(lambda: len(fake.written) > 8)

    obd.disconnect()
    count = len(fake.written)
    time.sleep(0.1)

    assert len(fake.written) == count
    names = {t.name for t in threading.enumerate()}
    assert "CommandQueueDrain" not in names
    assert "PollerScheduler" not in names


def test_readers_do_not_share_queues() -> None:
    """Two readers keep separate queues and poller sets."""
    first = OBDReader(ReaderConfig(drain_period_s=60.0))
    second = OBDReader(ReaderConfig(drain_period_s=60.0))
    first.connect(transport=FakeELM327())
    second.connect(transport=FakeELM327())

    first.write("010C")
    first.add_poller("rpm")

    assert first.queue_length == 8
    assert second.queue_length == 7
    assert second.active_pollers == []

    first.disconnect()
    second.disconnect()
