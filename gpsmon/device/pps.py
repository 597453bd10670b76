import fcntl
import logging
import struct
import termios
import threading
import time

logger = logging.getLogger("PPSWatcher")

PPSBAR = "-------------------------------------" \
         " PPS " \
         "-------------------------------------\n"


class PPSWatcher:
    """
    Watches the carrier-detect line of a serial receiver for pulse-per-second edges.

    Runs on its own thread, blocked in TIOCMIWAIT. Each assert edge is handed
    to ``on_pulse(clock, real)``, where ``clock`` is the local time of the
    edge and ``real`` is the GPS second the pulse marks, taken as the second
    after the most recent latched fix. Closing the port unblocks the wait.
    """
    def __init__(self, session, tracker, on_pulse):
        self.session = session
        self.tracker = tracker
        self.on_pulse = on_pulse
        self.running = False
        self.thread = None

    def start(self):
        if not hasattr(termios, "TIOCMIWAIT"):
            logger.warning("TIOCMIWAIT not available, PPS monitoring disabled")
            return False
        if self.thread and self.thread.is_alive():
            logger.warning("PPS watcher already running")
            return True
        self.running = True
        self.thread = threading.Thread(target=self._watch, name="pps")
        self.thread.daemon = True
        self.thread.start()
        logger.info(f"PPS watcher started on {self.session.path}")
        return True

    def deactivate(self):
        """Ask the thread to finish; it wakes when the port closes or the next edge arrives."""
        self.running = False

    def join(self):
        if self.thread:
            self.thread.join(timeout=2.0)
            self.thread = None
        logger.info("PPS watcher stopped")

    def stop(self):
        self.deactivate()
        self.join()

    def _carrier(self, fd):
        bits = fcntl.ioctl(fd, termios.TIOCMGET, struct.pack("I", 0))
        return bool(struct.unpack("I", bits)[0] & termios.TIOCM_CD)

    def _watch(self):
        while self.running:
            port = self.session.port
            if port is None:
                break
            try:
                fd = port.fileno()
                fcntl.ioctl(fd, termios.TIOCMIWAIT, termios.TIOCM_CD)
                clock = time.time()
                if not self._carrier(fd):
                    continue
            except (OSError, ValueError) as e:
                if self.running:
                    logger.error(f"PPS wait failed: {e}")
                break
            reference = self.tracker.fix_reference
            if reference <= 0:
                logger.debug("PPS edge before any fix, ignored")
                continue
            self.on_pulse(clock, float(int(reference) + 1))
