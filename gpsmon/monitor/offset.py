import json
import logging
from dataclasses import dataclass

logger = logging.getLogger("OffsetTracker")


@dataclass(frozen=True)
class TimeOffsetSample:
    clock: float
    real: float

    @property
    def offset(self):
        return self.clock - self.real


def timespec_str(value):
    return f"{value:.9f}"


def _json_time(report, prefix):
    return report[f"{prefix}_sec"] + report.get(f"{prefix}_nsec", 0) / 1e9


def parse_time_pair(payload):
    """
    (clock, real) out of a gpsd TOFF or PPS object.

    Raises ValueError for anything that is not a well-formed report.
    """
    try:
        report = json.loads(payload)
        return _json_time(report, "clock"), _json_time(report, "real")
    except (KeyError, TypeError) as e:
        raise ValueError(f"missing or bad field {e}") from e


class OffsetTracker:
    """
    Correlates PPS and TOFF telemetry with the fix stream.

    Only the latest sample of each kind is kept. ``latch(fix_time, sample)``
    is called once per new fix second with the most recent TOFF sample.
    """
    def __init__(self, report, latch=None, complain=None):
        self.report = report
        self.complain = complain or logger.warning
        self.latch = latch or self._record_latch
        self.time_offset = None
        self.pps_out = None
        self.ppsout_count = 0
        self.fix_reference = 0.0
        self.latched = None

    def toff_event(self, clock, real):
        self.time_offset = TimeOffsetSample(clock, real)
        self.report(f"TOFF={timespec_str(clock)} real={timespec_str(real)} "
                    f"offset={timespec_str(self.time_offset.offset)}\n")
        return self.time_offset

    def pps_event(self, clock, real):
        sample = TimeOffsetSample(clock, real)
        self.pps_out = sample
        self.ppsout_count += 1
        self.report(f"------------------- PPS offset: {timespec_str(sample.offset)} ------\n")
        return sample

    def handle_toff(self, payload):
        try:
            clock, real = parse_time_pair(payload)
        except ValueError as e:
            self.complain(f"Ill-formed TOFF packet: {e}")
            return None
        return self.toff_event(clock, real)

    def handle_pps(self, payload):
        try:
            clock, real = parse_time_pair(payload)
        except ValueError as e:
            self.complain(f"Ill-formed PPS packet: {e}")
            return None
        return self.pps_event(clock, real)

    def after_packet(self, fix_time):
        """Latch the latest offset against a fix, once per new fix second."""
        if fix_time <= 0:
            return False
        if int(fix_time) <= int(self.fix_reference):
            return False
        self.latch(fix_time, self.time_offset)
        self.fix_reference = fix_time
        return True

    def _record_latch(self, fix_time, sample):
        self.latched = (fix_time, sample)
        logger.debug(f"Latched fix {timespec_str(fix_time)} with offset {sample}")
