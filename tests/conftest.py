import pytest

from gpsmon.device.drivers import find_driver
from gpsmon.device.lexer import PacketLexer, PacketType
from gpsmon.device.session import IntakeStatus, SessionContext
from gpsmon.monitor.context import MonitorContext, OperatorState, Reporter


class FakeDisplay:
    """Records everything the monitor asks of its operator surface."""
    def __init__(self, rows=24, cols=80, events=None, commands=None):
        self.rows = rows
        self.cols = cols
        self.events = events if events is not None else []
        self.lines = []
        self.complaints = []
        self.statuses = []
        self.commands = list(commands or [])
        self.device_window = None
        self.resumed = 0
        self.stopped = False

    def start(self, prompt):
        return True

    def append(self, text):
        self.lines.append(text)

    def complain(self, text):
        self.complaints.append(text)

    def clear(self):
        self.events.append("clear")

    def layout(self, device_rows):
        self.events.append(f"layout:{device_rows}")

    def refresh_status(self, text):
        self.statuses.append(text)

    def read_command(self, prompt):
        command = self.commands.pop(0)
        if isinstance(command, BaseException):
            raise command
        return command

    def resume_input(self):
        self.resumed += 1

    def stop(self):
        self.stopped = True


class FakeSession:
    """
    Stands in for DeviceSession.

    ``script`` is a list of (packets, status) pairs; each classify_intake call
    consumes one, presenting every (type, bytes[, fix_time]) packet to the hook.
    An exception in place of the packet list is raised instead.
    """
    def __init__(self, device_type=None, serial=True, script=None):
        self.context = SessionContext()
        self.lexer = PacketLexer()
        self.device_type = device_type
        self.serial = serial
        self.baudrate = 9600
        self.wordlen = 8
        self.parity = "N"
        self.stopbits = 1
        self.newdata_time = 0.0
        self.nmea = None
        self.nmea_fields = None
        self.written = []
        self.write_result = None
        self.speeds = []
        self.drained = 0
        self.closed = False
        self.opened = False
        self.watch = None
        self.script = list(script or [])

    def open(self):
        self.opened = True

    def send_watch(self, nmea=False, device=None):
        self.watch = (nmea, device)

    def fileno(self):
        return 99

    def write(self, data):
        self.written.append(bytes(data))
        if self.write_result is not None:
            return self.write_result
        return len(data)

    def drain(self):
        self.drained += 1

    def set_speed(self, speed, wordlen, parity, stopbits):
        self.speeds.append((speed, wordlen, parity, stopbits))

    def switch_driver(self, type_name):
        self.device_type = find_driver(type_name)
        return self.device_type is not None

    def classify_intake(self, hook):
        packets, status = self.script.pop(0)
        if isinstance(packets, BaseException):
            raise packets
        for packet in packets:
            packet_type, payload = packet[0], packet[1]
            if len(packet) > 2:
                self.newdata_time = packet[2]
            self.lexer.type = packet_type
            self.lexer.outbuffer = payload
            self.lexer.counter += 1
            hook(self)
        return status

    def close(self):
        self.closed = True

    def describe(self, hostname):
        return f"{hostname}:/dev/fake 9600 8N1"


def nmea_packet(text, fix_time=None):
    payload = text.encode("ascii")
    if fix_time is None:
        return PacketType.NMEA, payload
    return PacketType.NMEA, payload, fix_time


READY = IntakeStatus.READY


@pytest.fixture
def display():
    return FakeDisplay()


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def make_ctx():
    def _make(session, display=None, serial=True, fallback=None):
        display = display or FakeDisplay()
        reporter = Reporter(display)
        operator = OperatorState(serial=serial, hostname="testhost", fallback=fallback)
        return MonitorContext(session, reporter, operator)
    return _make
