import functools
import io
from types import SimpleNamespace

import pytest
from conftest import READY, FakeDisplay, FakeSession, nmea_packet

from gpsmon.config import VERSION
from gpsmon.device.session import IntakeStatus
from gpsmon.main import ASSERTION_MESSAGE, build_parser, list_types, main
from gpsmon.monitor.context import Reporter
from gpsmon.monitor.event_loop import EventLoop, InvariantViolation
from gpsmon.monitor.panels import build_registry


def test_parser_flags():
    args = build_parser().parse_args(["-a", "-D", "2", "-l", "out.log", "-n", "-t", "MTK", "gpshost:2948"])
    assert args.nocurses
    assert args.debug == 2
    assert args.logfile == "out.log"
    assert args.nmea
    assert args.type == "MTK"
    assert args.source == "gpshost:2948"


def test_version(capsys):
    with pytest.raises(SystemExit) as exc:
        main(["-V"])
    assert exc.value.code == 0
    assert VERSION in capsys.readouterr().out


def test_list_types():
    out = io.StringIO()
    list_types(build_registry(), out)
    lines = out.getvalue().splitlines()
    assert lines[0].startswith("General commands available per type.")
    assert "i l q ^S ^Q   s c x  \tMTK-3301" in lines
    assert "i l q ^S ^Q   s   x +\tAshtech" in lines
    assert "i l q ^S ^Q n s   x  \tSiRF" in lines
    assert "i l q ^S ^Q          \tJSON slave driver" in lines


def test_list_exits_cleanly(capsys):
    assert main(["-L"]) == 0
    assert "NMEA0183" in capsys.readouterr().out


@pytest.mark.parametrize("prefix, message", [
    ("Zodiac", "-t option didn't match any driver.\n"),
    ("", "-t option matched more than one driver.\n"),
])
def test_type_must_match_one_driver(capsys, prefix, message):
    assert main(["-t", prefix]) == 1
    assert capsys.readouterr().err.endswith(message)


def test_unreachable_daemon_exits_with_failure():
    # Port 1 on localhost is never a gpsd
    assert main(["-a", "127.0.0.1:1"]) == 1


def test_list_follows_redirected_stdout(monkeypatch):
    out = io.StringIO()
    monkeypatch.setattr("sys.stdout", out)
    assert main(["-L"]) == 0
    assert "\tSiRF\n" in out.getvalue()


@pytest.fixture
def monitor(monkeypatch):
    """main() wired to a fake session and display, device always readable."""
    session = FakeSession(serial=False)
    display = FakeDisplay()
    reporters = []

    class RecordingReporter(Reporter):
        def __init__(self, display):
            super().__init__(display)
            reporters.append(self)

    monkeypatch.setattr("gpsmon.main.DeviceSession", lambda source: session)
    monkeypatch.setattr("gpsmon.main.StreamDisplay", lambda: display)
    monkeypatch.setattr("gpsmon.main.Reporter", RecordingReporter)
    monkeypatch.setattr("gpsmon.main.EventLoop",
                        functools.partial(EventLoop, selector=lambda r, w, e, timeout: ([99], [], [])))
    return SimpleNamespace(session=session, display=display, reporters=reporters)


def test_run_to_end_of_stream(monitor, tmp_path):
    log = tmp_path / "packets.log"
    monitor.session.script = [
        ([nmea_packet("$GPGGA,1*00\r\n")], READY),
        ([nmea_packet("$GPRMC,2*00\r\n")], READY),
        ([], IntakeStatus.EOF),
    ]
    assert main(["-a", "-n", "-l", str(log), "gpshost:2947:/dev/ttyUSB0"]) == 0
    assert monitor.session.opened
    assert monitor.session.watch == (True, "/dev/ttyUSB0")
    assert "(13) $GPGGA,1*00\n" in monitor.display.lines
    assert "(13) $GPRMC,2*00\n" in monitor.display.lines

    # Orderly shutdown released everything
    assert monitor.session.closed
    assert monitor.display.stopped
    assert monitor.reporters[0].logfile is None
    assert b"$GPRMC,2*00" in log.read_bytes()


def test_invariant_violation_exits_with_failure(monitor, tmp_path, capsys):
    log = tmp_path / "packets.log"
    monitor.session.script = [
        ([nmea_packet("$GPGGA,1*00\r\n")], READY),
        (InvariantViolation("SIGABRT received"), READY),
    ]
    assert main(["-a", "-l", str(log), "gpshost"]) == 1
    assert ASSERTION_MESSAGE == "gpsmon: assertion failure, probable I/O error\n"
    assert ASSERTION_MESSAGE in capsys.readouterr().err
    assert monitor.reporters[0].logfile is None
    assert monitor.display.stopped
    # No orderly shutdown, the transport is left alone
    assert not monitor.session.closed
    assert b"$GPGGA,1*00" in log.read_bytes()


def test_unexpected_failure_still_shuts_down(monitor, tmp_path, capsys):
    log = tmp_path / "packets.log"
    monitor.session.script = [(RuntimeError("lexer state corrupted"), READY)]
    assert main(["-a", "-l", str(log), "gpshost"]) == 0
    assert "Unknown error, should never happen." in capsys.readouterr().err
    assert monitor.session.closed
    assert monitor.display.stopped
    assert monitor.reporters[0].logfile is None
