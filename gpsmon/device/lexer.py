import logging
from enum import Enum

from gpsmon.utils.visualize import MAX_PACKET_LENGTH

logger = logging.getLogger("PacketLexer")

NMEA_MAX = 102  # longest sentence we accept, with room for vendor extensions
SIRF_LEADER = b"\xa0\xa2"
SIRF_TRAILER = b"\xb0\xb3"


class PacketType(Enum):
    BAD = "bad"
    NMEA = "NMEA"
    JSON = "JSON"
    SIRF = "SiRF"

    @property
    def textual(self):
        return self in (PacketType.NMEA, PacketType.JSON)


def nmea_checksum(body):
    """XOR of every byte between the leader and the '*'."""
    csum = 0
    for byte in body:
        csum ^= byte
    return csum


def sirf_checksum(payload):
    return sum(payload) & 0x7fff


class PacketLexer:
    """
    Splits a byte stream into NMEA sentences, gpsd JSON objects and SiRF binary frames.

    Garbage between packets is skipped a byte at a time. ``counter`` counts
    packets since the last reset; drivers use a zero counter as the signal to
    re-probe the receiver.
    """
    def __init__(self):
        self.inbuffer = bytearray()
        self.type = PacketType.BAD
        self.outbuffer = b""
        self.counter = 0

    def reset(self):
        self.inbuffer.clear()
        self.type = PacketType.BAD
        self.outbuffer = b""
        self.counter = 0

    def feed(self, data):
        self.inbuffer.extend(data)
        if len(self.inbuffer) > MAX_PACKET_LENGTH * 2:
            # Nothing we can frame is ever this long
            logger.debug(f"Dropping {len(self.inbuffer) - MAX_PACKET_LENGTH} stale bytes")
            del self.inbuffer[:-MAX_PACKET_LENGTH]

    def packets(self):
        """Yield (PacketType, bytes) for every complete packet in the buffer."""
        while True:
            packet = self._next_packet()
            if packet is None:
                return
            self.type, self.outbuffer = packet
            self.counter += 1
            yield packet

    def _next_packet(self):
        buf = self.inbuffer
        while buf:
            lead = buf[0]
            if lead in (ord("$"), ord("!")):
                packet = self._take_line(NMEA_MAX)
                if packet is False:
                    continue
                if packet is None:
                    return None
                if self._nmea_valid(packet):
                    return PacketType.NMEA, packet
                logger.debug(f"Bad NMEA checksum: {packet!r}")
                continue
            if lead == ord("{"):
                packet = self._take_line(MAX_PACKET_LENGTH)
                if packet is False:
                    continue
                if packet is None:
                    return None
                return PacketType.JSON, packet
            if buf[:2] == SIRF_LEADER:
                packet = self._take_sirf()
                if packet is False:
                    continue
                if packet is None:
                    return None
                return PacketType.SIRF, packet
            if lead == SIRF_LEADER[0] and len(buf) == 1:
                return None
            del buf[0]
        return None

    def _take_line(self, limit):
        """Returns the line, None when incomplete, False when the leader was garbage."""
        buf = self.inbuffer
        end = buf.find(b"\n")
        if end == -1:
            if len(buf) > limit:
                del buf[0]
                return False
            return None
        if end + 1 > limit:
            del buf[0]
            return False
        packet = bytes(buf[:end + 1])
        del buf[:end + 1]
        return packet

    def _take_sirf(self):
        buf = self.inbuffer
        if len(buf) < 4:
            return None
        length = ((buf[2] & 0x7f) << 8) | buf[3]
        total = 4 + length + 4
        if total > MAX_PACKET_LENGTH:
            del buf[0]
            return False
        if len(buf) < total:
            return None
        payload = bytes(buf[4:4 + length])
        csum = (buf[4 + length] << 8) | buf[5 + length]
        if buf[6 + length:total] != SIRF_TRAILER or csum != sirf_checksum(payload):
            del buf[0]
            return False
        packet = bytes(buf[:total])
        del buf[:total]
        return packet

    @staticmethod
    def _nmea_valid(packet):
        star = packet.rfind(b"*")
        if star == -1:
            # Checksum is optional in NMEA 0183
            return True
        try:
            expected = int(packet[star + 1:star + 3], 16)
        except ValueError:
            return False
        return nmea_checksum(packet[1:star]) == expected
