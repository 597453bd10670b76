import os
import signal

import pytest
from conftest import READY, FakeDisplay, FakeSession, nmea_packet

from gpsmon.device.drivers import DeviceType, driver_json_passthrough, driver_nmea0183
from gpsmon.device.lexer import PacketType
from gpsmon.device.session import IntakeStatus
from gpsmon.monitor.commands import CommandProcessor
from gpsmon.monitor.event_loop import Cancellation, EventLoop, TerminationCause
from gpsmon.monitor.handlers import Handler, HandlerRegistry, Switcher
from gpsmon.monitor.offset import OffsetTracker

TOFF = b'{"class":"TOFF","real_sec":100,"real_nsec":0,"clock_sec":100,"clock_nsec":2000000}\r\n'
PPS = b'{"class":"PPS","real_sec":100,"real_nsec":0,"clock_sec":100,"clock_nsec":1000000}\r\n'


class ScriptedSelector:
    """Hands back canned select() results, one per call."""
    def __init__(self, results):
        self.results = list(results)
        self.calls = 0

    def __call__(self, readers, writers, errors, timeout):
        self.calls += 1
        result = self.results.pop(0)
        if isinstance(result, BaseException):
            raise result
        return result


def device_ready(times=1):
    return [([99], [], [])] * times


@pytest.fixture
def build(make_ctx):
    def _build(script=(), selections=None, device_type=driver_nmea0183, serial=True, commands=()):
        updates = []
        handlers = [
            Handler(driver=driver_nmea0183, initialize=lambda ctx: True,
                    update=lambda ctx: updates.append(ctx.session.lexer.outbuffer)),
            Handler(driver=driver_json_passthrough),
        ]
        session = FakeSession(device_type=device_type, serial=serial, script=script)
        display = FakeDisplay(commands=commands)
        ctx = make_ctx(session, display, serial=serial)
        switcher = Switcher(HandlerRegistry(handlers), ctx)
        processor = CommandProcessor(ctx, switcher, sleep=lambda s: None)
        tracker = OffsetTracker(ctx.reporter.report, complain=ctx.reporter.complain)
        selector = ScriptedSelector(selections if selections is not None else device_ready(len(script)))
        loop = EventLoop(ctx, switcher, processor, tracker, selector=selector)
        loop.updates = updates
        return loop
    return _build


def test_packets_then_end_of_stream(build):
    loop = build(script=[
        ([nmea_packet("$GPGGA,1*00\r\n")], READY),
        ([nmea_packet("$GPRMC,2*00\r\n")], READY),
        ([], IntakeStatus.EOF),
    ], serial=False)
    assert loop.run() == TerminationCause.QUIT
    assert len(loop.updates) == 2
    assert loop.ctx.display.lines == ["(13) $GPGGA,1*00\n", "(13) $GPRMC,2*00\n"]
    assert loop.switcher.active.driver is driver_nmea0183
    assert loop.ctx.display.statuses[-1].endswith("NMEA0183")


@pytest.mark.parametrize("status, cause", [
    (IntakeStatus.UNREADY, TerminationCause.EMPTY_READ),
    (IntakeStatus.ERROR, TerminationCause.READ_ERROR),
])
def test_intake_failures_end_the_run(build, status, cause):
    loop = build(script=[([], status)])
    assert loop.run() == cause


def test_timeout_keeps_going(build):
    loop = build(selections=[([], [], [])])
    assert loop.step() is None


def test_failed_wait(build):
    assert build(selections=[OSError("bad fd")]).run() == TerminationCause.SELECT_FAILED
    assert build(selections=[([], [], [99])]).run() == TerminationCause.SELECT_FAILED


def test_driver_switch_failure(build):
    orphan = DeviceType(type_name="Orphan", packet_type=PacketType.NMEA)
    loop = build(script=[([nmea_packet("$GPGGA\r\n"), nmea_packet("$GPGSA\r\n")], READY)],
                 device_type=orphan)
    assert loop.run() == TerminationCause.DRIVER_SWITCH
    assert loop.ctx.display.lines == []


def test_recorded_signal_ends_the_run(build):
    loop = build(selections=[])
    loop.cancellation._record(signal.SIGTERM, None)
    assert loop.run() == TerminationCause.SIGNAL
    assert loop.selector.calls == 0


def test_cancellation_records_real_signal():
    previous = signal.getsignal(signal.SIGINT)
    cancellation = Cancellation()
    cancellation.install()
    try:
        os.kill(os.getpid(), signal.SIGINT)
        assert cancellation.cause == TerminationCause.SIGNAL
        cancellation.drain()
    finally:
        cancellation.uninstall()
    assert signal.getsignal(signal.SIGINT) is previous


def test_relayed_toff_is_not_shown_as_a_packet(build):
    loop = build(script=[([(PacketType.JSON, TOFF)], READY)], serial=False,
                 device_type=driver_json_passthrough)
    assert loop.step() is None
    assert loop.tracker.time_offset.offset == pytest.approx(0.002)
    assert loop.ctx.display.lines == [
        "TOFF=100.002000000 real=100.000000000 offset=0.002000000\n",
    ]
    assert loop.switcher.active is None


def test_relayed_pps_is_reported(build):
    loop = build(script=[([(PacketType.JSON, PPS)], READY)], serial=False,
                 device_type=driver_json_passthrough)
    loop.step()
    assert loop.tracker.ppsout_count == 1
    assert loop.ctx.display.lines == ["------------------- PPS offset: 0.001000000 ------\n"]


def test_fix_latch_runs_per_packet(build):
    latches = []
    loop = build(script=[([nmea_packet("$GPRMC\r\n", 100.1), nmea_packet("$GPGGA\r\n", 100.1),
                           nmea_packet("$GPRMC\r\n", 101.1)], READY)])
    loop.tracker.latch = lambda fix_time, sample: latches.append(fix_time)
    loop.step()
    assert latches == [100.1, 101.1]


def test_raw_packets_go_to_the_log(build, tmp_path):
    loop = build(script=[([nmea_packet("$GPGGA\r\n")], READY)])
    path = tmp_path / "packets.log"
    loop.ctx.reporter.open_log(str(path), "wb")
    loop.step()
    loop.ctx.reporter.close_log()
    assert path.read_bytes() == b"(8) $GPGGA\n$GPGGA\r\n"


def test_keystroke_runs_command(build):
    loop = build(selections=[([0], [], []), ([0], [], [])], commands=["z", "q"])
    assert loop.step() is None
    assert loop.ctx.display.complaints == ["Unknown command 'z'"]
    assert loop.ctx.display.resumed == 1
    assert loop.step() == TerminationCause.QUIT


def test_closed_operator_input_stops_listening(build):
    loop = build(selections=[([0], [], [])], commands=[EOFError("closed")])
    assert loop.step() is None
    assert loop.stdin_fd is None
    assert loop._wait_set() == [99]


def test_shutdown_explains_failures(build, capsys):
    loop = build()
    assert loop.shutdown(TerminationCause.EMPTY_READ) == "Device went offline"
    assert loop.session.closed
    assert loop.ctx.display.stopped
    assert capsys.readouterr().err == "Device went offline\n"


def test_shutdown_is_quiet_on_quit(build, capsys):
    loop = build()
    assert loop.shutdown(TerminationCause.QUIT) is None
    assert capsys.readouterr().err == ""


def test_pulse_callback(build):
    loop = build()
    loop.on_pulse(101.0004, 101.0)
    lines = loop.ctx.display.lines
    assert lines[0].startswith("------")
    assert " PPS " in lines[0]
    assert lines[1].startswith("------------------- PPS offset: 0.000")
