"""
Protocol descriptors for the receivers the monitor knows about.

A descriptor names a wire protocol and carries the optional reconfiguration
operations that receiver family accepts. The monitor never calls these
directly; it goes through ``gpsmon.monitor.capabilities``.
"""
import logging
import struct
from dataclasses import dataclass
from typing import Callable, Optional

from gpsmon.device.lexer import PacketType, SIRF_LEADER, SIRF_TRAILER, nmea_checksum, sirf_checksum

logger = logging.getLogger("Drivers")

# Descriptor flags
DRIVER_STICKY = 0x01

# Mode switcher arguments
MODE_NMEA = 0
MODE_BINARY = 1

PARITY_CODES = {"N": 0, "O": 1, "E": 2}


@dataclass(frozen=True)
class DeviceType:
    type_name: str
    packet_type: PacketType
    flags: int = 0
    probe: Optional[str] = None
    trigger: Optional[str] = None
    mode_switcher: Optional[Callable] = None
    speed_switcher: Optional[Callable] = None
    rate_switcher: Optional[Callable] = None
    control_send: Optional[Callable] = None

    @property
    def sticky(self):
        return bool(self.flags & DRIVER_STICKY)

    def __str__(self):
        return self.type_name


def nmea_frame(sentence):
    """Add the leader, checksum and CR/LF to a bare sentence body."""
    if isinstance(sentence, str):
        sentence = sentence.encode("ascii")
    sentence = sentence.rstrip(b"\r\n")
    if not sentence.startswith((b"$", b"!")):
        sentence = b"$" + sentence
    if b"*" not in sentence:
        sentence += b"*%02X" % nmea_checksum(sentence[1:])
    return sentence + b"\r\n"


def nmea_write(session, payload):
    """control_send for NMEA-speaking receivers."""
    return session.write(nmea_frame(payload))


def sirf_frame(payload):
    return SIRF_LEADER + struct.pack(">H", len(payload)) + payload \
        + struct.pack(">H", sirf_checksum(payload)) + SIRF_TRAILER


def sirf_write(session, payload):
    """control_send for SiRF binary mode; payload is the bare message body."""
    return session.write(sirf_frame(bytes(payload)))


# Ashtech

ASHTECH_SPEEDS = {
    4800: 4,
    9600: 5,
    19200: 6,
    38400: 7,
    57600: 8,
    115200: 9,
}


def ashtech_speed(session, speed, wordlen, parity, stopbits):
    code = ASHTECH_SPEEDS.get(speed)
    if code is None or (wordlen, parity, stopbits) != (8, "N", 1):
        return False
    return nmea_write(session, f"$PASHS,SPD,A,{code}") > 0


# MediaTek

MTK_MIN_INTERVAL_MS = 100
MTK_MAX_INTERVAL_MS = 10000


def mtk3301_speed(session, speed, wordlen, parity, stopbits):
    if (wordlen, parity, stopbits) != (8, "N", 1):
        return False
    return nmea_write(session, f"$PMTK251,{speed}") > 0


def mtk3301_rate(session, rate):
    interval = int(round(rate * 1000))
    if not MTK_MIN_INTERVAL_MS <= interval <= MTK_MAX_INTERVAL_MS:
        return False
    return nmea_write(session, f"$PMTK220,{interval}") > 0


# SiRF

SIRF_TO_NMEA_RATES = bytes([
    0x01, 0x01,  # GGA
    0x00, 0x01,  # GLL
    0x01, 0x01,  # GSA
    0x05, 0x01,  # GSV
    0x01, 0x01,  # RMC
    0x00, 0x01,  # VTG
    0x00, 0x01,  # MSS
    0x00, 0x01,  # EPE
    0x00, 0x01,  # ZDA
    0x00, 0x00,  # unused
])


SIRF_MAX_NMEA_SPEED = 0xffff


def sirf_mode(session, mode):
    if mode == MODE_NMEA:
        # MID 129, switch to NMEA at the current speed; the speed field is 16 bits
        if session.baudrate > SIRF_MAX_NMEA_SPEED:
            logger.warning(f"SiRF cannot switch to NMEA at {session.baudrate} baud")
            return False
        msg = bytes([0x81, 0x02]) + SIRF_TO_NMEA_RATES + struct.pack(">H", session.baudrate)
        return sirf_write(session, msg) > 0
    return nmea_write(session, f"$PSRF100,0,{session.baudrate},8,1,0") > 0


def sirf_speed(session, speed, wordlen, parity, stopbits):
    if parity not in PARITY_CODES:
        return False
    if session.lexer.type == PacketType.NMEA:
        return nmea_write(
            session, f"$PSRF100,1,{speed},{wordlen},{stopbits},{PARITY_CODES[parity]}") > 0
    # MID 134, set binary serial port
    msg = struct.pack(">BIBBBB", 0x86, speed, wordlen, stopbits, PARITY_CODES[parity], 0)
    return sirf_write(session, msg) > 0


driver_nmea0183 = DeviceType(
    type_name="NMEA0183",
    packet_type=PacketType.NMEA,
    control_send=nmea_write,
)

driver_ashtech = DeviceType(
    type_name="Ashtech",
    packet_type=PacketType.NMEA,
    probe="$PASHQ,RID",
    trigger="$PASHR,RID,",
    speed_switcher=ashtech_speed,
    control_send=nmea_write,
)

driver_mtk3301 = DeviceType(
    type_name="MTK-3301",
    packet_type=PacketType.NMEA,
    probe="$PMTK605",
    trigger="$PMTK705,",
    speed_switcher=mtk3301_speed,
    rate_switcher=mtk3301_rate,
    control_send=nmea_write,
)

driver_sirf = DeviceType(
    type_name="SiRF",
    packet_type=PacketType.SIRF,
    flags=DRIVER_STICKY,
    mode_switcher=sirf_mode,
    speed_switcher=sirf_speed,
    control_send=sirf_write,
)

driver_garmin = DeviceType(
    type_name="Garmin NMEA",
    packet_type=PacketType.NMEA,
    probe="$PGRMCE",
    trigger="$PGRMC,",
    control_send=nmea_write,
)

driver_fv18 = DeviceType(
    type_name="San Jose Navigation FV18",
    packet_type=PacketType.NMEA,
    trigger="$PFEC,GPint,",
    control_send=nmea_write,
)

driver_gpsclock = DeviceType(
    type_name="Furuno Electric GH-79L4",
    packet_type=PacketType.NMEA,
    trigger="$PFEC,GPssd",
    control_send=nmea_write,
)

# AIS receivers speak !AIVDM sentences
driver_aivdm = DeviceType(
    type_name="AIVDM",
    packet_type=PacketType.NMEA,
    trigger="!AIVDM",
)

# Relayed sessions: gpsd does the talking, we only watch
driver_json_passthrough = DeviceType(
    type_name="JSON slave driver",
    packet_type=PacketType.JSON,
)

DRIVERS = (
    driver_nmea0183,
    driver_ashtech,
    driver_mtk3301,
    driver_sirf,
    driver_garmin,
    driver_fv18,
    driver_gpsclock,
    driver_aivdm,
    driver_json_passthrough,
)


def find_driver(type_name):
    for driver in DRIVERS:
        if driver.type_name == type_name:
            return driver
    return None
