import logging
import os
import select
import signal
import sys
from enum import Enum

from gpsmon.config import WAIT_TIMEOUT
from gpsmon.device.lexer import PacketType
from gpsmon.device.pps import PPSBAR
from gpsmon.device.session import IntakeStatus
from gpsmon.monitor.commands import CommandResult
from gpsmon.utils.visualize import packet_line

logger = logging.getLogger("EventLoop")

TOFF_LEADER = b'{"class":"TOFF",'
PPS_LEADER = b'{"class":"PPS",'

CANCEL_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGQUIT)


class TerminationCause(Enum):
    SELECT_FAILED = 1
    DRIVER_SWITCH = 2
    EMPTY_READ = 3
    READ_ERROR = 4
    SIGNAL = 5
    QUIT = 6
    UNKNOWN = 7

    @property
    def explanation(self):
        """Message for the operator, None for deliberate exits."""
        return EXPLANATIONS.get(self)


EXPLANATIONS = {
    TerminationCause.SELECT_FAILED: "I/O wait on device failed",
    TerminationCause.DRIVER_SWITCH: "Driver type switch failed",
    TerminationCause.EMPTY_READ: "Device went offline",
    TerminationCause.READ_ERROR: "Read error from device",
    TerminationCause.UNKNOWN: "Unknown error, should never happen.",
}

INTAKE_CAUSES = {
    IntakeStatus.UNREADY: TerminationCause.EMPTY_READ,
    IntakeStatus.ERROR: TerminationCause.READ_ERROR,
    IntakeStatus.EOF: TerminationCause.QUIT,
}


class InvariantViolation(AssertionError):
    """Raised on SIGABRT; program state can no longer be trusted."""


class Cancellation:
    """
    Turns termination signals into a recorded cause plus a wakeup byte.

    The signal handler only records; the blocked wait sees the wakeup pipe
    become readable and the loop unwinds on its own.
    """
    def __init__(self):
        self.cause = None
        self.read_fd = None
        self.write_fd = None
        self.previous = {}
        self.previous_wakeup = -1

    def install(self):
        self.read_fd, self.write_fd = os.pipe()
        os.set_blocking(self.read_fd, False)
        os.set_blocking(self.write_fd, False)
        self.previous_wakeup = signal.set_wakeup_fd(self.write_fd)
        for sig in CANCEL_SIGNALS:
            self.previous[sig] = signal.signal(sig, self._record)
        self.previous[signal.SIGABRT] = signal.signal(signal.SIGABRT, self._abort)

    def uninstall(self):
        for sig, handler in self.previous.items():
            signal.signal(sig, handler)
        self.previous = {}
        if self.read_fd is not None:
            signal.set_wakeup_fd(self.previous_wakeup)
            os.close(self.read_fd)
            os.close(self.write_fd)
            self.read_fd = self.write_fd = None

    def _record(self, signum, frame):
        if self.cause is None:
            self.cause = TerminationCause.SIGNAL

    def _abort(self, signum, frame):
        raise InvariantViolation("SIGABRT received")

    def drain(self):
        try:
            while os.read(self.read_fd, 512):
                pass
        except BlockingIOError:
            pass


class EventLoop:
    """
    Multiplexes device input, operator keystrokes and a heartbeat timeout.

    ``step()`` returns None to keep going or the TerminationCause that ends
    the run; ``run()`` loops until a cause appears and then goes through
    ``shutdown()`` exactly once.
    """
    def __init__(self, ctx, switcher, commands, tracker, pps=None, stdin_fd=0,
                 timeout=WAIT_TIMEOUT, selector=select.select, cancellation=None):
        self.ctx = ctx
        self.switcher = switcher
        self.commands = commands
        self.tracker = tracker
        self.pps = pps
        self.stdin_fd = stdin_fd
        self.timeout = timeout
        self.selector = selector
        self.cancellation = cancellation or Cancellation()
        self.pending = None
        switcher.on_switch = self.refresh_status

    @property
    def session(self):
        return self.ctx.session

    def refresh_status(self):
        active = self.switcher.active
        name = active.name if active is not None else "Unknown device"
        self.ctx.display.refresh_status(f"gpsmon: {self.ctx.prompt()}  {name}")

    def run(self):
        """Run until something ends the session. Returns the cause."""
        cause = None
        while cause is None:
            cause = self.step()
        return cause

    def _wait_set(self):
        readers = [self.session.fileno()]
        if self.stdin_fd is not None:
            readers.append(self.stdin_fd)
        if self.cancellation.read_fd is not None:
            readers.append(self.cancellation.read_fd)
        return readers

    def step(self):
        if self.cancellation.cause is not None:
            return self.cancellation.cause

        device_fd = self.session.fileno()
        try:
            readable, _, errored = self.selector(self._wait_set(), [], [device_fd], self.timeout)
        except (OSError, ValueError) as e:
            logger.error(f"Wait failed: {e}")
            return TerminationCause.SELECT_FAILED

        if self.cancellation.read_fd in readable:
            self.cancellation.drain()
        if self.cancellation.cause is not None:
            return self.cancellation.cause

        if not readable and not errored:
            # Timeout, nothing to do but go around again
            return None

        if device_fd in errored:
            return TerminationCause.SELECT_FAILED

        if device_fd in readable:
            status = self.session.classify_intake(self.packet_hook)
            if self.pending is not None:
                return self.pending
            cause = INTAKE_CAUSES.get(status)
            if cause is not None:
                logger.info(f"Intake returned {status.value}")
                return cause

        if self.stdin_fd is not None and self.stdin_fd in readable:
            return self.keystroke()
        return None

    def keystroke(self):
        reporter = self.ctx.reporter
        try:
            with reporter.lock:
                line = self.ctx.display.read_command(self.ctx.prompt())
        except EOFError:
            logger.info("Operator input closed, watching only")
            self.stdin_fd = None
            return None
        if line is None:
            return None
        if self.commands.execute(line) == CommandResult.QUIT:
            return TerminationCause.QUIT
        with reporter.lock:
            self.ctx.display.resume_input()
        return None

    def packet_hook(self, session):
        """Runs once per framed packet."""
        if self.pending is not None:
            return
        payload = session.lexer.outbuffer
        relayed_json = not self.ctx.operator.serial and session.lexer.type == PacketType.JSON

        if relayed_json and payload.startswith(TOFF_LEADER):
            self.tracker.handle_toff(payload)
            return
        if relayed_json and payload.startswith(PPS_LEADER):
            self.tracker.handle_pps(payload)
        else:
            if not self.switcher.select(session):
                self.pending = TerminationCause.DRIVER_SWITCH
                return
            self.ctx.reporter.report(packet_line(payload, session.lexer.type.textual))

        self.ctx.reporter.log_raw(payload)
        self.tracker.after_packet(session.newdata_time)

    def on_pulse(self, clock, real):
        """PPS watcher callback, runs on the watcher's thread."""
        self.ctx.reporter.packet_log(PPSBAR)
        self.tracker.pps_event(clock, real)

    def shutdown(self, cause):
        """
        Release everything and explain the exit. Runs once, on every exit path.

        Returns the explanation printed, None for deliberate exits.
        """
        if self.pps is not None:
            self.pps.deactivate()
        self.session.close()
        if self.pps is not None:
            self.pps.join()
        self.ctx.reporter.close_log()
        self.ctx.display.stop()
        self.cancellation.uninstall()

        explanation = cause.explanation
        if explanation is not None:
            sys.stderr.write(f"{explanation}\n")
        logger.info(f"Monitor stopped: {cause.name}")
        return explanation
