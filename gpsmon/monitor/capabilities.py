import logging
from contextlib import contextmanager
from enum import Enum

logger = logging.getLogger("Capabilities")


class Capability(Enum):
    MODE = "mode_switcher"
    SPEED = "speed_switcher"
    RATE = "rate_switcher"
    CONTROL = "control_send"


# Letters shown by --list, one per capability
CAPABILITY_LETTERS = {
    Capability.MODE: "n",
    Capability.SPEED: "s",
    Capability.RATE: "c",
    Capability.CONTROL: "x",
}


class CapabilityError(Exception):
    """A reconfiguration was requested from a descriptor that lacks it."""
    def __init__(self, driver, capability):
        self.driver = driver
        self.capability = capability
        super().__init__(f"Device type {driver} has no {capability.value}")


@contextmanager
def writable(context):
    """
    Lift the session's read-only policy for one operator-initiated reconfiguration.

    The previous value is restored on the way out so the reconfiguration is
    never taken for a spontaneous re-identification of the device.
    """
    previous = context.readonly
    context.readonly = False
    try:
        yield
    finally:
        context.readonly = previous


class CapabilityDispatcher:
    """
    Looks up and invokes the optional operations a protocol descriptor exposes.

    Never decodes payloads; it only routes a request to the descriptor that
    should handle it.
    """
    def capabilities(self, driver):
        if driver is None:
            return frozenset()
        return frozenset(cap for cap in Capability if getattr(driver, cap.value) is not None)

    def has(self, driver, capability):
        return driver is not None and getattr(driver, capability.value) is not None

    def select(self, capability, live, fallback):
        """The remembered fallback wins when it has the capability, else the live descriptor."""
        if fallback is not None and self.has(fallback, capability):
            return fallback
        return live

    def _operation(self, driver, capability):
        if not self.has(driver, capability):
            raise CapabilityError(driver, capability)
        return getattr(driver, capability.value)

    def switch_mode(self, driver, session, mode):
        logger.debug(f"{driver} mode switch to {mode}")
        return self._operation(driver, Capability.MODE)(session, mode)

    def switch_speed(self, driver, session, speed, wordlen, parity, stopbits):
        logger.debug(f"{driver} speed switch to {speed} {wordlen}{parity}{stopbits}")
        return self._operation(driver, Capability.SPEED)(session, speed, wordlen, parity, stopbits)

    def switch_rate(self, driver, session, rate):
        logger.debug(f"{driver} rate switch to {rate}")
        return self._operation(driver, Capability.RATE)(session, rate)

    def control_send(self, driver, session, payload):
        logger.debug(f"{driver} control send of {len(payload)} bytes")
        return self._operation(driver, Capability.CONTROL)(session, payload)

    def letters(self, driver):
        """Capability letters for the --list table, blanks where absent."""
        present = self.capabilities(driver)
        return " ".join(CAPABILITY_LETTERS[cap] if cap in present else " " for cap in Capability)


def monitor_control_send(ctx, payload, dispatcher=None):
    """Send a control packet through the live descriptor. Low-level sessions only."""
    if not ctx.operator.serial:
        return False
    dispatcher = dispatcher or CapabilityDispatcher()
    with writable(ctx.session.context):
        st = dispatcher.control_send(ctx.session.device_type, ctx.session, payload)
    return st != -1
