import logging
import time
from datetime import datetime, timezone

import pynmea2

from gpsmon.device.drivers import (
    driver_aivdm,
    driver_ashtech,
    driver_fv18,
    driver_garmin,
    driver_gpsclock,
    driver_json_passthrough,
    driver_mtk3301,
    driver_nmea0183,
    driver_sirf,
)
from gpsmon.device.lexer import PacketType
from gpsmon.device.session import nmea_fix_time
from gpsmon.monitor.capabilities import monitor_control_send
from gpsmon.monitor.handlers import CommandStatus, Handler, HandlerRegistry

logger = logging.getLogger("NmeaPanel")

# Window geometry, WIDTH shall be >= 80
WIDTH_L = 25
WIDTH_M = 27
WIDTH_R = 30
WIDTH = WIDTH_L + WIDTH_M + WIDTH_R - 2

HEIGHT_1 = 3
HEIGHT_2 = 3
HEIGHT_3 = 9
HEIGHT_4 = 6  # 6 for an 80x24 screen, 7 for 80x25
HEIGHT = HEIGHT_1 + HEIGHT_2 + HEIGHT_3 + HEIGHT_4

# Max satellites we can display
MAXSATS = HEIGHT_3 + HEIGHT_4 - 3

SENTENCE_LINE = 1


class NmeaPanel:
    """
    Device window for NMEA-speaking receivers.

    Shows which sentence types have been seen (the one with the longest
    interval since the previous sentence is highlighted, it is usually the
    cycle start), the cooked time/position from RMC, fix quality from GGA and
    GSA, and the satellite list from complete GSV groups.
    """
    def __init__(self, clock=time.monotonic):
        self.clock = clock
        self.initialize(None)

    def initialize(self, ctx):
        self.sentences = []
        self.truncated = False
        self.last_tick = self.clock()
        self.tick_interval = 0.0
        self.longest = None
        self.fix = {}
        self.used = set()
        self.skyview = []
        self._gsv = []
        return True

    def leave(self, ctx):
        window = ctx.display.device_window
        if window is not None:
            window.clear()

    def update(self, ctx):
        session = ctx.session
        payload = session.lexer.outbuffer
        if session.lexer.type == PacketType.SIRF:
            tag = f"MID{payload[4]}" if len(payload) > 4 else None
        elif payload[:1] in (b"$", b"!") and session.nmea_fields:
            tag = session.nmea_fields[0]
        else:
            tag = None
        if not tag:
            return

        self._note_sentence(tag, WIDTH - 2)

        now = self.clock()
        interval = now - self.last_tick
        if interval > 0 and interval > self.tick_interval:
            self.tick_interval = interval
            self.longest = tag
        self.last_tick = now

        if session.lexer.type == PacketType.NMEA and session.nmea is not None:
            self._process(session.nmea)
        self.draw(ctx.display.device_window)

    def _note_sentence(self, tag, width):
        if tag in self.sentences or self.truncated:
            return
        if len(" ".join(self.sentences + [tag])) < width:
            self.sentences.append(tag)
        else:
            self.truncated = True

    def _process(self, msg):
        """Pull display fields out of one parsed sentence."""
        try:
            if isinstance(msg, pynmea2.RMC):
                self.fix["time"] = _fix_iso(msg)
                if msg.status == "A" and msg.latitude and msg.longitude:
                    self.fix["latitude"] = msg.latitude
                    self.fix["longitude"] = msg.longitude
                self.fix["speed"] = msg.spd_over_grnd
                self.fix["course"] = msg.true_course

            elif isinstance(msg, pynmea2.GGA):
                self.fix["quality"] = msg.gps_qual
                self.fix["satellites"] = msg.num_sats
                self.fix["hdop"] = msg.horizontal_dil
                self.fix["altitude"] = msg.altitude

            elif isinstance(msg, pynmea2.GSA):
                self.fix["mode"] = msg.mode_fix_type
                self.fix["pdop"] = msg.pdop
                self.fix["vdop"] = msg.vdop
                self.used = {
                    int(prn) for prn in (getattr(msg, f"sv_id{i:02d}") for i in range(1, 13))
                    if prn and prn.isdigit()
                }

            elif isinstance(msg, pynmea2.GSV):
                self._process_gsv(msg)

        except (AttributeError, TypeError, ValueError) as e:
            logger.debug(f"Error processing {msg.sentence_type}: {e}")

    def _process_gsv(self, msg):
        if str(msg.msg_num) == "1":
            self._gsv = []
        for i in range(1, 5):
            prn = getattr(msg, f"sv_prn_num_{i}", "")
            if not prn or not prn.isdigit():
                continue
            self._gsv.append((
                int(prn),
                getattr(msg, f"elevation_deg_{i}", "") or "",
                getattr(msg, f"azimuth_{i}", "") or "",
                getattr(msg, f"snr_{i}", "") or "",
            ))
        if str(msg.msg_num) == str(msg.num_messages):
            # Used satellites first, then by PRN
            self._gsv.sort(key=lambda sat: (sat[0] not in self.used, sat[0]))
            self.skyview = self._gsv[:MAXSATS]

    def lines(self):
        """Text rows of the device window."""
        fix = self.fix
        rows = [
            "Sentences:",
            " ".join(self.sentences) + (" ..." if self.truncated else ""),
            f"Longest cycle tag: {self.longest or ''}",
            f"Time: {fix.get('time') or 'n/a'}",
            f"Lat: {_coord(fix.get('latitude'))}  Lon: {_coord(fix.get('longitude'))}",
            f"Speed: {fix.get('speed') or 'n/a'} kn  Course: {fix.get('course') or 'n/a'}",
            f"Quality: {fix.get('quality') or 'n/a'}  Sats: {fix.get('satellites') or 'n/a'}"
            f"  Alt: {fix.get('altitude') or 'n/a'}",
            f"Mode: {fix.get('mode') or 'n/a'}  PDOP: {fix.get('pdop') or 'n/a'}"
            f"  HDOP: {fix.get('hdop') or 'n/a'}  VDOP: {fix.get('vdop') or 'n/a'}",
            " PRN  Elev  Azim  SNR  Used",
        ]
        for prn, elevation, azimuth, snr in self.skyview:
            rows.append(f" {prn:3d}  {elevation:>4}  {azimuth:>4}  {snr:>3}  "
                        f"{'Y' if prn in self.used else 'N'}")
        return rows

    def draw(self, window):
        if window is None:
            return
        window.clear()
        for row, text in enumerate(self.lines()[:HEIGHT]):
            if row == SENTENCE_LINE and self.longest:
                self._draw_sentences(window, row)
            else:
                window.put(row, 0, text[:WIDTH])
        window.refresh()

    def _draw_sentences(self, window, row):
        col = 0
        for tag in self.sentences:
            window.put(row, col, tag, bold=(tag == self.longest))
            col += len(tag) + 1
        if self.truncated:
            window.put(row, col, "...")


def _coord(value):
    if value is None:
        return "n/a"
    return f"{value:.6f}"


def _fix_iso(msg):
    fix_time = nmea_fix_time(msg)
    if fix_time is None:
        return None
    return datetime.fromtimestamp(fix_time, timezone.utc).isoformat()


# Ashtech

ASHTECH_SPEED_9600 = 5
ASHTECH_SPEED_57600 = 8
ASHTECH_REBOOT_DELAY = 6  # it takes 4-6 sec for the receiver to reboot

ASHTECH_NORMAL = (
    "$PASHS,NME,ALL,A,OFF",  # silence outbound chatter
    "$PASHS,NME,ALL,B,OFF",
    "$PASHS,NME,GGA,A,ON",
    "$PASHS,NME,GSA,A,ON",
    "$PASHS,NME,GSV,A,ON",
    "$PASHS,NME,RMC,A,ON",
    "$PASHS,NME,ZDA,A,ON",
)

ASHTECH_RAW_EXTRA = (
    "$PASHS,NME,POS,A,ON",  # Ashtech TPV solution
    "$PASHS,NME,SAT,A,ON",  # Ashtech satellite status
    "$PASHS,NME,MCA,A,ON",  # MCA measurements
    "$PASHS,NME,PBN,A,ON",  # ECEF TPV solution
    "$PASHS,NME,SNV,A,ON,10",  # almanac data
    "$PASHS,NME,XMG,A,ON",  # exception messages
)


class AshtechCommands:
    """
    Private commands for Ashtech receivers.

    N: normal, 9600 baud, GGA+GSA+GSV+RMC+ZDA
    R: raw, 57600 baud, normal plus POS+SAT+MCA+PBN+SNV+XMG
    """
    def __init__(self, sleep=time.sleep):
        self.sleep = sleep

    def __call__(self, ctx, line):
        if line[:1] == "N":
            self._configure(ctx, ASHTECH_SPEED_9600, ())
        elif line[:1] == "R":
            self._configure(ctx, ASHTECH_SPEED_57600, ASHTECH_RAW_EXTRA)
        else:
            return CommandStatus.UNKNOWN
        return CommandStatus.MATCH

    def _configure(self, ctx, speed_code, extra):
        for sentence in ASHTECH_NORMAL:
            monitor_control_send(ctx, sentence.encode("ascii"))
        monitor_control_send(ctx, f"$PASHS,INI,{speed_code},{ASHTECH_SPEED_9600},,,0,".encode("ascii"))
        self.sleep(ASHTECH_REBOOT_DELAY)
        monitor_control_send(ctx, b"$PASHS,WAS,ON")  # enable WAAS
        for sentence in extra:
            monitor_control_send(ctx, sentence.encode("ascii"))


def nmea_handler(driver, command=None):
    """
    Clones of the generic NMEA panel differ only in their descriptor, which
    is what enables the mode/speed/rate commands for that receiver.
    """
    panel = NmeaPanel()
    return Handler(
        driver=driver,
        initialize=panel.initialize,
        update=panel.update,
        command=command,
        leave=panel.leave,
        min_rows=HEIGHT,
        min_cols=WIDTH,
    )


def build_registry():
    """The closed, ordered list of handlers, built once at startup."""
    return HandlerRegistry([
        nmea_handler(driver_nmea0183),
        nmea_handler(driver_ashtech, command=AshtechCommands()),
        nmea_handler(driver_mtk3301),
        nmea_handler(driver_sirf),
        nmea_handler(driver_garmin),
        nmea_handler(driver_fv18),
        nmea_handler(driver_gpsclock),
        nmea_handler(driver_aivdm),
        # No methods, it's all packet window
        Handler(driver=driver_json_passthrough, min_rows=0, min_cols=80),
    ])
