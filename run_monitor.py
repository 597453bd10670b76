#!/usr/bin/env python

import os
import sys


def main():
    """Run the monitor from a source checkout."""
    # Add the current directory to the path
    sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

    # Import after path setup
    from gpsmon.main import main as monitor_main

    return monitor_main()


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("Monitor stopped by user")
