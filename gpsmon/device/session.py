import json
import logging
import os
import socket
from datetime import datetime, timezone
from enum import Enum

import pynmea2
import serial

from gpsmon.config import DEFAULT_BAUDRATE, GPSD_HOST, GPSD_PORT
from gpsmon.device.drivers import (
    DRIVERS,
    driver_json_passthrough,
    driver_nmea0183,
    driver_sirf,
    find_driver,
    nmea_frame,
)
from gpsmon.device.lexer import PacketLexer, PacketType

logger = logging.getLogger("DeviceSession")

READ_SIZE = 4096

PARITIES = {
    "N": serial.PARITY_NONE,
    "O": serial.PARITY_ODD,
    "E": serial.PARITY_EVEN,
}

STOPBITS = {
    1: serial.STOPBITS_ONE,
    2: serial.STOPBITS_TWO,
}

WORDLENGTHS = {
    7: serial.SEVENBITS,
    8: serial.EIGHTBITS,
}

WATCH_RAW = '?WATCH={"raw":2,"pps":true}\r\n'
WATCH_RAW_DEVICE = '?WATCH={"raw":2,"pps":true,"device":"%s"}\r\n'
WATCH_NMEA = '?WATCH={"nmea":true,"pps":true}\r\n'
WATCH_NMEA_DEVICE = '?WATCH={"nmea":true,"pps":true,"device":"%s"}\r\n'


class SessionError(Exception):
    """The device or daemon could not be opened."""


class IntakeStatus(Enum):
    READY = "ready"
    UNREADY = "unready"
    ERROR = "error"
    EOF = "eof"


class SessionContext:
    """
    Policy shared between the monitor and the drivers.

    ``readonly`` keeps drivers from probing or reconfiguring the receiver on
    their own; a monitoring tool should only touch the device when told to.
    """
    def __init__(self, readonly=True):
        self.readonly = readonly


class SourceSpec:
    """Parsed ``server[:port[:device]]`` or ``/dev/...`` argument."""
    def __init__(self, server=GPSD_HOST, port=GPSD_PORT, device=None):
        self.server = server
        self.port = port
        self.device = device

    @classmethod
    def parse(cls, arg):
        if arg is None:
            return cls()
        if arg.startswith("/dev"):
            return cls(server=None, port=None, device=arg)
        if arg.startswith("["):
            # [ipv6]:port:device
            end = arg.find("]")
            server = arg[1:end]
            rest = arg[end + 1:].lstrip(":")
        else:
            server, _, rest = arg.partition(":")
        port, _, device = rest.partition(":")
        return cls(server=server or GPSD_HOST, port=port or GPSD_PORT, device=device or None)

    @property
    def serial(self):
        return self.server is None


class DeviceSession:
    """
    One live connection to a receiver, either a serial line or a gpsd daemon.

    The session owns the packet framer and enough decoding to know which
    driver is talking and when a new fix arrived. Everything the operator
    sees is produced by the per-packet hook handed to ``classify_intake``.
    """
    def __init__(self, source, context=None, baudrate=DEFAULT_BAUDRATE):
        self.source = source
        self.context = context or SessionContext()
        self.serial = source.serial
        self.path = source.device if source.serial else f"tcp://{source.server}:{source.port}"
        self.baudrate = baudrate
        self.wordlen = 8
        self.parity = "N"
        self.stopbits = 1
        self.port = None
        self.sock = None
        self.lexer = PacketLexer()
        self.device_type = None
        self.newdata_time = 0.0
        self.nmea = None
        self.nmea_fields = None
        self.json_report = None
        self.on_write = None

    def open(self):
        """Open the endpoint. Raises SessionError on failure."""
        if self.serial:
            try:
                self.port = serial.Serial(
                    port=self.path,
                    baudrate=self.baudrate,
                    bytesize=WORDLENGTHS[self.wordlen],
                    parity=PARITIES[self.parity],
                    stopbits=STOPBITS[self.stopbits],
                    timeout=0,
                )
            except serial.SerialException as e:
                raise SessionError(f"Failed to open {self.path}: {e}") from e
            logger.info(f"Opened {self.path} at {self.baudrate} baud")
        else:
            try:
                self.sock = socket.create_connection((self.source.server, int(self.source.port)), timeout=10)
            except (OSError, ValueError) as e:
                raise SessionError(f"Failed to connect to {self.path}: {e}") from e
            self.sock.settimeout(None)
            logger.info(f"Connected to {self.path}")

    def fileno(self):
        if self.port is not None:
            return self.port.fileno()
        return self.sock.fileno()

    def write(self, data):
        """Pass bytes to the device. Returns the count written, -1 on error."""
        if self.on_write is not None:
            self.on_write(data)
        try:
            if self.port is not None:
                count = self.port.write(data)
                self.port.flush()
            else:
                self.sock.sendall(data)
                count = len(data)
        except (OSError, serial.SerialException) as e:
            logger.error(f"Write to {self.path} failed: {e}")
            return -1
        logger.debug(f"Wrote {count} bytes to {self.path}")
        return count

    def drain(self):
        """Wait for pending output to leave the UART."""
        if self.port is not None:
            self.port.flush()

    def set_speed(self, speed, wordlen, parity, stopbits):
        """Apply a new line discipline to the local serial port."""
        if self.port is None:
            return
        self.port.baudrate = speed
        self.port.bytesize = WORDLENGTHS[wordlen]
        self.port.parity = PARITIES[parity]
        self.port.stopbits = STOPBITS[stopbits]
        self.baudrate, self.wordlen, self.parity, self.stopbits = speed, wordlen, parity, stopbits
        logger.info(f"Line set to {speed} {wordlen}{parity}{stopbits}")

    def switch_driver(self, type_name):
        """Force the session onto the named driver."""
        driver = find_driver(type_name)
        if driver is None:
            return False
        logger.info(f"Switching driver to {type_name}")
        self.device_type = driver
        return True

    def send_watch(self, nmea=False, device=None):
        if device is not None:
            request = (WATCH_NMEA_DEVICE if nmea else WATCH_RAW_DEVICE) % device
        else:
            request = WATCH_NMEA if nmea else WATCH_RAW
        self.sock.sendall(request.encode("ascii"))

    def classify_intake(self, hook):
        """
        Read what the descriptor has for us and run ``hook(self)`` once per packet.

        Only called after the wait reported the descriptor readable, so an
        empty read on a serial line means the device went away.
        """
        try:
            if self.port is not None:
                data = os.read(self.port.fileno(), READ_SIZE)
            else:
                data = self.sock.recv(READ_SIZE)
        except OSError as e:
            logger.error(f"Read from {self.path} failed: {e}")
            return IntakeStatus.ERROR

        if not data:
            return IntakeStatus.UNREADY if self.serial else IntakeStatus.EOF

        self.lexer.feed(data)
        for packet_type, packet in self.lexer.packets():
            self._identify(packet_type, packet)
            self._decode(packet_type, packet)
            if not self.context.readonly and self.lexer.counter == 1:
                self._probe()
            hook(self)
        return IntakeStatus.READY

    def close(self):
        if self.port is not None:
            self.port.close()
            self.port = None
        if self.sock is not None:
            self.sock.close()
            self.sock = None
        logger.info(f"Closed {self.path}")

    def _identify(self, packet_type, packet):
        current = self.device_type
        if packet_type == PacketType.SIRF:
            self.device_type = driver_sirf
        elif packet_type == PacketType.JSON:
            self.device_type = driver_json_passthrough
        elif packet_type == PacketType.NMEA:
            if current is None or not (current.sticky or current.packet_type == PacketType.NMEA):
                self.device_type = driver_nmea0183
            for driver in DRIVERS:
                if driver.trigger and packet.startswith(driver.trigger.encode("ascii")):
                    self.device_type = driver
        if self.device_type is not current:
            logger.info(f"Device identified as {self.device_type}")

    def _probe(self):
        """Ask NMEA receivers to identify themselves."""
        for driver in DRIVERS:
            if driver.probe:
                self.write(nmea_frame(driver.probe))

    def _decode(self, packet_type, packet):
        if packet_type == PacketType.NMEA:
            text = packet.decode("ascii", errors="replace").strip()
            self.nmea_fields = text.split("*")[0][1:].split(",")
            try:
                self.nmea = pynmea2.parse(text)
            except pynmea2.ParseError as e:
                logger.debug(f"Unparsed sentence {text!r}: {e}")
                self.nmea = None
                return
            fix_time = nmea_fix_time(self.nmea)
            if fix_time is not None:
                self.newdata_time = fix_time
        elif packet_type == PacketType.JSON:
            try:
                self.json_report = json.loads(packet)
            except json.JSONDecodeError as e:
                logger.debug(f"Unparsed JSON object: {e}")
                self.json_report = None
                return
            if isinstance(self.json_report, dict) and self.json_report.get("class") == "TPV":
                fix_time = iso8601_time(self.json_report.get("time"))
                if fix_time is not None:
                    self.newdata_time = fix_time

    def describe(self, hostname):
        """Prompt text naming the connection."""
        if self.serial:
            return f"{hostname}:{self.path} {self.baudrate} {self.wordlen}{self.parity}{self.stopbits}"
        if self.source.device is not None:
            return f"{self.path}:{self.source.device}"
        return self.path


def nmea_fix_time(msg):
    """Epoch seconds of an RMC fix, None for sentences without a full date."""
    if not isinstance(msg, pynmea2.RMC):
        return None
    try:
        stamp = datetime.combine(msg.datestamp, msg.timestamp)
    except (TypeError, ValueError):
        return None
    if stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=timezone.utc)
    return stamp.timestamp()


def iso8601_time(text):
    if not text:
        return None
    try:
        stamp = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=timezone.utc)
    return stamp.timestamp()
