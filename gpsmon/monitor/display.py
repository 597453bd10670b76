"""
Operator surfaces: a plain line stream for headless runs and a curses panel.

Both offer the same small interface to the rest of the monitor: ``rows`` and
``cols``, ``append`` for packet lines, ``complain`` for errors, ``clear`` and
``layout`` when the handler changes, ``refresh_status``, ``device_window``
for the handler's panel, and ``read_command`` for operator input.
"""
import curses
import logging
import os
import sys
import termios
import time

from gpsmon.config import HEADLESS_COMMAND_PAUSE

logger = logging.getLogger("Display")

CTRL_L = 0x0c
UNLIMITED = 1 << 30


class StreamDisplay:
    """Headless surface, writes lines to stdout and reads commands from a raw tty."""
    def __init__(self, stdin_fd=0, out=None, err=None, pause=HEADLESS_COMMAND_PAUSE):
        self.stdin_fd = stdin_fd
        self.out = out or sys.stdout
        self.err = err or sys.stderr
        self.pause = pause
        self.rows = UNLIMITED
        self.cols = UNLIMITED
        self.device_window = None
        self.cooked = None
        self.rare = None

    def start(self, prompt):
        self.out.write(f"gpsmon: {prompt}\n")
        self.out.flush()
        if not os.isatty(self.stdin_fd):
            return True
        self.cooked = termios.tcgetattr(self.stdin_fd)
        self.rare = termios.tcgetattr(self.stdin_fd)
        self.rare[3] &= ~(termios.ICANON | termios.ECHO)
        self.rare[6][termios.VMIN] = 1
        termios.tcflush(self.stdin_fd, termios.TCIFLUSH)
        termios.tcsetattr(self.stdin_fd, termios.TCSANOW, self.rare)
        return True

    def stop(self):
        if self.cooked is not None:
            termios.tcsetattr(self.stdin_fd, termios.TCSANOW, self.cooked)

    def append(self, text):
        self.out.write(text)
        self.out.flush()

    def complain(self, text):
        self.err.write(f"{text}\n")
        self.err.flush()

    def clear(self):
        pass

    def layout(self, device_rows):
        pass

    def refresh_status(self, text):
        pass

    def read_command(self, prompt):
        """First keystroke arrives raw, the rest of the line is read cooked."""
        first = os.read(self.stdin_fd, 1)
        if not first:
            raise EOFError("operator input closed")
        if self.cooked is not None:
            termios.tcflush(self.stdin_fd, termios.TCIFLUSH)
            termios.tcsetattr(self.stdin_fd, termios.TCSANOW, self.cooked)
        char = first.decode("ascii", errors="replace")
        self.out.write(f"gpsmon: {prompt}> {char}")
        self.out.flush()
        if char == "\n":
            return char
        return char + sys.stdin.readline()

    def resume_input(self):
        # Leave the command's reply on screen before packets scroll it away
        time.sleep(self.pause)
        if self.rare is not None:
            termios.tcsetattr(self.stdin_fd, termios.TCSANOW, self.rare)


class DeviceWindow:
    """The handler's part of the curses screen."""
    def __init__(self, window):
        self.window = window

    @property
    def width(self):
        return self.window.getmaxyx()[1]

    def put(self, row, col, text, bold=False):
        try:
            self.window.addstr(row, col, text, curses.A_BOLD if bold else curses.A_NORMAL)
        except curses.error:
            # Writing the bottom-right cell raises even though it succeeds
            pass

    def clear(self):
        self.window.erase()

    def refresh(self):
        self.window.noutrefresh()


class CursesDisplay:
    """
    Full-screen panel: status line, command line, device window, packet window.
    """
    def __init__(self):
        self.stdscr = None
        self.statwin = None
        self.cmdwin = None
        self.packetwin = None
        self.device_window = None
        self.promptlen = 0

    @property
    def rows(self):
        return curses.LINES

    @property
    def cols(self):
        return curses.COLS

    def start(self, prompt):
        try:
            self.stdscr = curses.initscr()
        except curses.error as e:
            logger.error(f"curses initialization failed: {e}")
            return False
        curses.cbreak()
        curses.noecho()
        self.stdscr.intrflush(False)
        self.stdscr.keypad(True)
        self.statwin = curses.newwin(1, curses.COLS, 0, 0)
        self.cmdwin = curses.newwin(1, curses.COLS, 1, 0)
        self.layout(0)
        self.refresh_status(prompt)
        return True

    def stop(self):
        if self.stdscr is not None:
            curses.nocbreak()
            self.stdscr.keypad(False)
            curses.echo()
            curses.endwin()
            self.stdscr = None

    def layout(self, device_rows):
        """Split the area below the command line between device and packet windows."""
        top = 2
        if device_rows > 0:
            self.device_window = DeviceWindow(curses.newwin(device_rows, curses.COLS, top, 0))
        else:
            self.device_window = None
        leftover = curses.LINES - top - device_rows
        self.packetwin = curses.newwin(max(leftover, 1), curses.COLS, top + device_rows, 0)
        self.packetwin.scrollok(True)
        self.packetwin.setscrreg(0, max(leftover, 1) - 1)
        curses.doupdate()

    def clear(self):
        self.stdscr.clearok(True)
        self.stdscr.clear()
        self.stdscr.noutrefresh()

    def refresh_status(self, text):
        self.statwin.erase()
        self.statwin.addnstr(0, 0, text, curses.COLS - 1, curses.A_REVERSE)
        self.statwin.noutrefresh()
        self._prompt()
        curses.doupdate()

    def _prompt(self):
        self.cmdwin.erase()
        self.cmdwin.addstr(0, 0, "> ")
        self.promptlen = 2
        self.cmdwin.noutrefresh()

    def append(self, text):
        try:
            self.packetwin.addstr(text)
        except curses.error:
            pass
        self.packetwin.noutrefresh()
        if self.device_window is not None:
            self.device_window.refresh()
        curses.doupdate()

    def complain(self, text):
        self.cmdwin.move(0, self.promptlen)
        self.cmdwin.clrtoeol()
        self.cmdwin.addnstr(text, max(curses.COLS - self.promptlen - 1, 1), curses.A_BOLD)
        self.cmdwin.refresh()
        curses.beep()

    def read_command(self, prompt):
        key = self.cmdwin.getch()
        if key == CTRL_L:
            self.stdscr.clearok(True)
            self.stdscr.refresh()
            return None
        if key < 0 or key > 0xff:
            return None
        self._prompt()
        self.cmdwin.addch(key)
        curses.echo()
        rest = self.cmdwin.getstr()
        curses.noecho()
        self._prompt()
        curses.doupdate()
        return chr(key) + rest.decode("ascii", errors="replace")

    def resume_input(self):
        pass
