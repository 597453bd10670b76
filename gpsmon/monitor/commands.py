import logging
import math
import re
import struct
import time
from enum import Enum

from gpsmon.config import SETTLE_DELAY
from gpsmon.device.drivers import DRIVERS, MODE_BINARY, MODE_NMEA
from gpsmon.monitor.capabilities import Capability, CapabilityDispatcher, CapabilityError, writable
from gpsmon.monitor.handlers import CommandStatus

logger = logging.getLogger("CommandProcessor")

SPEED_PATTERN = re.compile(r"\s*(\d+)")

# Failures a reconfiguration can raise; reported to the operator, never fatal
COMMAND_ERRORS = (CapabilityError, OSError, ValueError, OverflowError, struct.error)


class CommandResult(Enum):
    CONTINUE = "continue"
    QUIT = "quit"


class HexError(ValueError):
    pass


def hexpack(text):
    """Decode an operator-typed hex string, whitespace allowed between digits."""
    digits = "".join(text.split())
    if not digits:
        raise HexError("empty hex string")
    if len(digits) % 2:
        raise HexError("odd number of hex digits")
    try:
        return bytes.fromhex(digits)
    except ValueError as e:
        raise HexError(str(e)) from e


def split_command(line):
    """Verb and argument; one run of whitespace after the verb is skipped."""
    line = line.rstrip("\r\n")
    if not line:
        return None, ""
    verb, arg = line[0], line[1:]
    if arg[:1].isspace():
        arg = arg.lstrip()
    return verb, arg


class CommandProcessor:
    """
    Single-character operator commands.

    Device reconfiguration goes through the capability dispatcher, preferring
    the remembered fallback descriptor over the live one when the fallback
    has the capability.
    """
    def __init__(self, ctx, switcher, dispatcher=None, settle_delay=SETTLE_DELAY, sleep=time.sleep):
        self.ctx = ctx
        self.switcher = switcher
        self.dispatcher = dispatcher or CapabilityDispatcher()
        self.settle_delay = settle_delay
        self.sleep = sleep
        self.verbs = {
            "c": self.change_rate,
            "i": self.toggle_probing,
            "l": self.open_log,
            "n": self.change_mode,
            "q": self.quit,
            "s": self.change_speed,
            "t": self.force_type,
            "x": self.send_control,
            "X": self.send_raw,
        }

    @property
    def session(self):
        return self.ctx.session

    def complain(self, text):
        self.ctx.reporter.complain(text)

    def execute(self, line):
        """
        Run one command line.

        Args:
            line (str): Operator input, first character is the verb

        Returns:
            CommandResult: QUIT when the monitor should stop
        """
        verb, arg = split_command(line)
        if verb is None:
            return CommandResult.CONTINUE
        logger.debug(f"Command {verb!r} arg {arg!r}")

        try:
            return self._dispatch(verb, arg, line.rstrip("\r\n"))
        except COMMAND_ERRORS as e:
            # The receiver or the line refused it, the session carries on
            logger.error(f"Command {verb!r} failed: {e}")
            self.complain(f"Command '{verb}' failed: {e}")
            return CommandResult.CONTINUE

    def _dispatch(self, verb, arg, line):
        active = self.switcher.active
        if active is not None and active.command is not None:
            status = active.command(self.ctx, line)
            if status == CommandStatus.TERMINATE:
                return CommandResult.QUIT
            if status == CommandStatus.MATCH:
                return CommandResult.CONTINUE

        action = self.verbs.get(verb)
        if action is None:
            self.complain(f"Unknown command '{verb}'")
            return CommandResult.CONTINUE
        return action(arg) or CommandResult.CONTINUE

    def _low_level(self, need_device=True, missing="No device defined yet"):
        """Check the preconditions shared by the device verbs."""
        if need_device and self.session.device_type is None:
            self.complain(missing)
            return False
        if not self.ctx.operator.serial:
            self.complain("Only available in low-level mode.")
            return False
        return True

    def _switcher_for(self, capability):
        return self.dispatcher.select(capability, self.session.device_type, self.ctx.operator.fallback)

    def _settle(self):
        self.session.drain()
        self.sleep(self.settle_delay)

    def change_rate(self, arg):
        if not self._low_level():
            return
        try:
            rate = float(arg)
        except ValueError:
            self.complain(f"Invalid rate '{arg}'")
            return
        if not math.isfinite(rate):
            self.complain(f"Invalid rate '{arg}'")
            return
        switcher = self._switcher_for(Capability.RATE)
        if not self.dispatcher.has(switcher, Capability.RATE):
            self.complain(f"Device type {switcher.type_name} has no rate switcher")
            return
        with writable(self.session.context):
            if self.dispatcher.switch_rate(switcher, self.session, rate):
                self.ctx.reporter.announce("[Rate switcher called.]")
            else:
                self.complain("Rate not supported.")

    def toggle_probing(self, arg):
        if not self._low_level(missing="No GPS type detected."):
            return
        context = self.session.context
        try:
            context.readonly = int(arg) == 0
        except ValueError:
            context.readonly = not context.readonly
        self.ctx.reporter.announce(f"[probing {'dis' if context.readonly else 'en'}abled]")
        if not context.readonly:
            # Forces the drivers to probe again
            self.session.lexer.counter = 0

    def open_log(self, arg):
        reporter = self.ctx.reporter
        reporter.close_log()
        if arg and not reporter.open_log(arg):
            self.complain(f"Couldn't open log file {arg}")

    def change_mode(self, arg):
        try:
            mode = int(arg)
        except ValueError:
            # Toggle: leave text mode if we are in it, else go back to NMEA
            mode = MODE_BINARY if self.session.lexer.type.textual else MODE_NMEA
        if not self._low_level():
            return
        switcher = self._switcher_for(Capability.MODE)
        if not self.dispatcher.has(switcher, Capability.MODE):
            self.complain(f"Device type {switcher.type_name} has no mode switcher")
            return
        with writable(self.session.context):
            self.ctx.reporter.announce(f"[Mode switcher to mode {mode}]")
            switched = self.dispatcher.switch_mode(switcher, self.session, mode)
        if not switched:
            self.complain("Mode switch not supported.")
            return
        self._settle()
        # The session resyncs as plain NMEA after this, so keep the
        # real driver around for switching back
        if mode == MODE_NMEA:
            self.ctx.operator.fallback = switcher

    def change_speed(self, arg):
        if not self._low_level():
            return
        session = self.session
        wordlen, parity, stopbits = session.wordlen, session.parity, session.stopbits
        switcher = self._switcher_for(Capability.SPEED)

        head, colon, modespec = arg.partition(":")
        if colon:
            modespec = modespec.ljust(3)
            if modespec[0] not in "78":
                self.complain("No support for that word length.")
                return
            wordlen = int(modespec[0])
            parity = modespec[1]
            if parity not in "NOE":
                self.complain(f"What parity is '{parity}'?.")
                return
            if modespec[2] not in "12":
                self.complain("Stop bits must be 1 or 2.")
                return
            stopbits = int(modespec[2])

        match = SPEED_PATTERN.match(head)
        if match is None:
            self.complain(f"Invalid speed '{head}'")
            return
        speed = int(match.group(1))

        if not self.dispatcher.has(switcher, Capability.SPEED):
            self.complain(f"Device type {switcher.type_name} has no speed switcher")
            return
        with writable(session.context):
            if self.dispatcher.switch_speed(switcher, session, speed, wordlen, parity, stopbits):
                self.ctx.reporter.announce("[Speed switcher called.]")
                # Let the control string reach the receiver before the
                # local baud change trashes the UART buffer
                self._settle()
                session.set_speed(speed, wordlen, parity, stopbits)
            else:
                self.complain("Speed/mode combination not supported.")

    def force_type(self, arg):
        if not self._low_level(need_device=False):
            return
        if not arg:
            return
        matches = [driver for driver in DRIVERS if arg in driver.type_name]
        if not matches:
            self.complain(f"No driver type matches '{arg}'.")
        elif len(matches) > 1:
            self.complain(f"Multiple driver type names match '{arg}'.")
        else:
            forcetype = matches[0]
            if self.switcher.switch_type(forcetype):
                self.session.switch_driver(forcetype.type_name)
                self.ctx.operator.fallback = None

    def send_control(self, arg):
        if not self._low_level():
            return
        try:
            payload = hexpack(arg)
        except HexError as e:
            self.complain(f"Invalid hex string ({e})")
            return
        driver = self.session.device_type
        if not self.dispatcher.has(driver, Capability.CONTROL):
            self.complain(f"Device type {driver.type_name} has no control-send method.")
            return
        with writable(self.session.context):
            st = self.dispatcher.control_send(driver, self.session, payload)
        if st == -1:
            self.complain("Control send failed.")

    def send_raw(self, arg):
        if not self._low_level(need_device=False):
            return
        try:
            payload = hexpack(arg)
        except HexError as e:
            self.complain(f"Invalid hex string ({e})")
            return
        st = self.session.write(payload)
        if st != len(payload):
            self.complain("Raw send failed.")

    def quit(self, arg):
        return CommandResult.QUIT
