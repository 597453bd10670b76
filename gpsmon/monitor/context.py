import logging
import threading
from dataclasses import dataclass
from typing import Optional

from gpsmon.device.drivers import DeviceType
from gpsmon.utils.visualize import render_printable

logger = logging.getLogger("Monitor")


class Reporter:
    """
    Owns the display and the operator's packet log, and the lock that guards both.

    The PPS watcher reports from its own thread, so every write to either sink
    happens with ``lock`` held to keep lines from interleaving.
    """
    def __init__(self, display):
        self.display = display
        self.lock = threading.RLock()
        self.logfile = None

    @property
    def logging(self):
        return self.logfile is not None

    def open_log(self, path, mode="ab"):
        """Open the packet log. Returns False (logging stays off) on failure."""
        self.close_log()
        try:
            self.logfile = open(path, mode)
        except OSError as e:
            logger.error(f"Couldn't open log file {path}: {e}")
            return False
        logger.info(f"Logging packets to {path}")
        return True

    def close_log(self):
        with self.lock:
            if self.logfile is not None:
                self.logfile.close()
                self.logfile = None

    def report(self, text):
        """Show a line to the operator and copy it to the log."""
        with self.lock:
            self.display.append(text)
            if self.logfile is not None:
                self.logfile.write(text.encode("ascii", errors="replace"))

    def packet_log(self, text):
        self.report(render_printable(text.encode("ascii", errors="replace")))

    def log_raw(self, payload):
        with self.lock:
            if self.logfile is not None and payload:
                written = self.logfile.write(payload)
                assert written >= 1

    def announce(self, text):
        """Out-of-band note, goes to the log only."""
        with self.lock:
            if self.logfile is not None:
                self.logfile.write(f">>>{text}\n".encode("ascii", errors="replace"))

    def complain(self, text):
        logger.debug(f"complaint: {text}")
        with self.lock:
            self.display.complain(text)


@dataclass
class OperatorState:
    serial: bool
    hostname: str
    fallback: Optional[DeviceType] = None


class MonitorContext:
    """Everything one monitoring run shares between its components."""
    def __init__(self, session, reporter, operator):
        self.session = session
        self.reporter = reporter
        self.operator = operator

    @property
    def display(self):
        return self.reporter.display

    @property
    def probing(self):
        return not self.session.context.readonly

    def prompt(self):
        return self.session.describe(self.operator.hostname)
