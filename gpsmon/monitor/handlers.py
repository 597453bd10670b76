import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from gpsmon.device.drivers import DeviceType, driver_nmea0183
from gpsmon.device.lexer import PacketType

logger = logging.getLogger("Handlers")


class CommandStatus(Enum):
    UNKNOWN = 0
    MATCH = 1
    TERMINATE = 2


@dataclass(frozen=True)
class Handler:
    """
    Display and command module bound to one protocol descriptor.

    Hooks take the monitor context: ``initialize(ctx) -> bool``,
    ``update(ctx)``, ``command(ctx, line) -> CommandStatus``, ``leave(ctx)``.
    """
    driver: DeviceType
    initialize: Optional[Callable] = None
    update: Optional[Callable] = None
    command: Optional[Callable] = None
    leave: Optional[Callable] = None
    min_rows: int = 0
    min_cols: int = 80

    @property
    def name(self):
        return self.driver.type_name


class HandlerRegistry:
    """Ordered, read-only set of handlers, at most one per descriptor."""
    def __init__(self, handlers):
        seen = set()
        for handler in handlers:
            if handler.name in seen:
                raise ValueError(f"Duplicate handler for {handler.name}")
            seen.add(handler.name)
        self.handlers = tuple(handlers)

    def __iter__(self):
        return iter(self.handlers)

    def __len__(self):
        return len(self.handlers)

    def resolve(self, type_name):
        """Handler for the named protocol, None when nothing matches."""
        for handler in self.handlers:
            if handler.name == type_name:
                return handler
        return None

    def prefix_matches(self, prefix):
        return [h for h in self.handlers if h.name.startswith(prefix)]


class Switcher:
    """
    Keeps the active handler in step with the packet stream.

    ``on_switch`` is called after every completed switch so the caller can
    redraw its framing and status regions.
    """
    def __init__(self, registry, ctx, on_switch=None):
        self.registry = registry
        self.ctx = ctx
        self.on_switch = on_switch
        self.active = None
        self.last_packet_type = PacketType.BAD

    def switch_type(self, driver):
        """
        Make the handler for ``driver`` the active one.

        Returns False only when no handler matches. A screen too small for
        the handler is reported and leaves the current handler in place.
        """
        handler = self.registry.resolve(driver.type_name)
        if handler is None:
            self.ctx.reporter.complain(f"No monitor matches {driver.type_name}.")
            return False

        display = self.ctx.display
        if display.rows < handler.min_rows + 1 or display.cols < handler.min_cols:
            self.ctx.reporter.complain(
                f"{handler.name} requires {handler.min_cols}x{handler.min_rows + 1} screen")
            return True

        if self.active is not None and self.active.leave is not None:
            self.active.leave(self.ctx)
        self.active = handler
        logger.info(f"Switched to {handler.name} monitor")

        # Screen might have JSON on it from the init sequence
        display.clear()
        display.layout(handler.min_rows)
        if handler.initialize is not None and not handler.initialize(self.ctx):
            self.ctx.reporter.complain("Internal initialization failed.")
        if self.on_switch is not None:
            self.on_switch()
        return True

    def select(self, session):
        """
        Per-packet selection. Returns False when a needed switch failed.

        Switches only when the packet type changes, so a handler is not
        re-initialized on every sentence.
        """
        packet_type = session.lexer.type
        if packet_type != self.last_packet_type:
            target = session.device_type or driver_nmea0183
            previous = self.active.driver if self.active is not None else None
            if packet_type == PacketType.NMEA and previous is not None and previous.sticky:
                # A sticky receiver that fell back to plain NMEA keeps its own panel
                target = previous
            if not self.switch_type(target):
                return False
            self.last_packet_type = packet_type

        if self.active is not None and session.lexer.outbuffer and self.active.update is not None:
            self.active.update(self.ctx)
        return True
