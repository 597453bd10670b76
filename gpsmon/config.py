import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

VERSION = "3.25.1"

# Relayed session (gpsd daemon) configuration
GPSD_HOST = os.getenv("GPSMON_GPSD_HOST", "localhost")
GPSD_PORT = os.getenv("GPSMON_GPSD_PORT", "2947")

# Low-level session configuration
DEFAULT_BAUDRATE = int(os.getenv("GPSMON_BAUDRATE", "9600"))

# Event loop wait ceiling in seconds, doubles as a liveness heartbeat
WAIT_TIMEOUT = float(os.getenv("GPSMON_WAIT_TIMEOUT", "2.0"))

# Time to let the receiver settle after a mode/speed change before touching the line again
SETTLE_DELAY = float(os.getenv("GPSMON_SETTLE_DELAY", "0.05"))

# Headless mode pauses after each command so the reply is readable before packets resume
HEADLESS_COMMAND_PAUSE = float(os.getenv("GPSMON_COMMAND_PAUSE", "2.0"))

# Python logging file for diagnostics (not the operator packet log)
DIAGNOSTIC_LOG = os.getenv("GPSMON_DIAGNOSTIC_LOG")
