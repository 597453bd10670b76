import argparse
import socket
import sys

from gpsmon.config import DIAGNOSTIC_LOG, VERSION
from gpsmon.device.pps import PPSWatcher
from gpsmon.device.session import DeviceSession, SessionError, SourceSpec
from gpsmon.monitor.capabilities import CapabilityDispatcher
from gpsmon.monitor.commands import CommandProcessor
from gpsmon.monitor.context import MonitorContext, OperatorState, Reporter
from gpsmon.monitor.display import CursesDisplay, StreamDisplay
from gpsmon.monitor.event_loop import EventLoop, TerminationCause
from gpsmon.monitor.handlers import Switcher
from gpsmon.monitor.offset import OffsetTracker
from gpsmon.monitor.panels import build_registry
from gpsmon.utils.logging_setup import log_library_versions, setup_logging

ASSERTION_MESSAGE = "gpsmon: assertion failure, probable I/O error\n"


def build_parser():
    parser = argparse.ArgumentParser(
        prog="gpsmon",
        description="Monitor and reconfigure a GPS receiver, directly or through gpsd.",
    )
    parser.add_argument("source", nargs="?",
                        help="server[:port[:device]] for a gpsd relay, or a /dev path for a direct line")
    parser.add_argument("-a", "--nocurses", action="store_true", help="No curses. Data only.")
    parser.add_argument("-D", "--debug", type=int, default=0, metavar="DEBUGLEVEL", help="Set DEBUGLEVEL")
    parser.add_argument("-L", "--list", action="store_true", help="List known device types, then exit.")
    parser.add_argument("-l", "--logfile", metavar="FILE", help="Log packets to FILE")
    parser.add_argument("-n", "--nmea", action="store_true", help="Force NMEA mode.")
    parser.add_argument("-t", "--type", metavar="TYPE", help="Set receiver TYPE")
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s: {VERSION}")
    return parser


def list_types(registry, out=None):
    out = out or sys.stdout
    dispatcher = CapabilityDispatcher()
    out.write("General commands available per type. '+' means there are private commands.\n")
    for handler in registry:
        private = "+" if handler.command is not None else " "
        out.write(f"i l q ^S ^Q {dispatcher.letters(handler.driver)} {private}\t{handler.name}\n")


def main(argv=None):
    args = build_parser().parse_args(argv)
    logger = setup_logging("gpsmon", DIAGNOSTIC_LOG, args.debug)
    log_library_versions(logger)

    registry = build_registry()
    if args.list:
        list_types(registry)
        return 0

    fallback = None
    if args.type is not None:
        matches = registry.prefix_matches(args.type)
        if len(matches) > 1:
            sys.stderr.write("-t option matched more than one driver.\n")
            return 1
        if not matches:
            sys.stderr.write("-t option didn't match any driver.\n")
            return 1
        fallback = matches[0].driver

    source = SourceSpec.parse(args.source)
    session = DeviceSession(source)
    display = StreamDisplay() if args.nocurses else CursesDisplay()
    reporter = Reporter(display)
    if args.logfile and not reporter.open_log(args.logfile, "wb"):
        sys.stderr.write("Couldn't open logfile for writing.\n")
        return 1

    try:
        session.open()
    except SessionError as e:
        logger.error(str(e))
        reporter.close_log()
        return 1

    operator = OperatorState(serial=source.serial, hostname=socket.gethostname(), fallback=fallback)
    ctx = MonitorContext(session, reporter, operator)
    switcher = Switcher(registry, ctx)
    commands = CommandProcessor(ctx, switcher)
    tracker = OffsetTracker(reporter.report, complain=reporter.complain)
    loop = EventLoop(ctx, switcher, commands, tracker)

    if source.serial:
        loop.pps = PPSWatcher(session, tracker, loop.on_pulse)
        if not loop.pps.start():
            loop.pps = None
    else:
        session.send_watch(nmea=args.nmea, device=source.device)

    # This is a monitoring utility. Autoprobing stays off because some
    # chips cannot be probed without flipping them to native mode.
    session.context.readonly = True

    cause = TerminationCause.UNKNOWN
    orderly = True
    try:
        loop.cancellation.install()
        if display.start(ctx.prompt()):
            cause = loop.run()
    except AssertionError:
        # State can't be trusted, skip the orderly shutdown
        orderly = False
        reporter.close_log()
        display.stop()
        loop.cancellation.uninstall()
        sys.stderr.write(ASSERTION_MESSAGE)
        return 1
    except Exception as e:
        logger.error(f"Monitor failed: {str(e)}", exc_info=True)
    finally:
        if orderly:
            loop.shutdown(cause)
    return 0


if __name__ == "__main__":
    sys.exit(main())
