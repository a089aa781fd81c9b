"""
Entry point for python -m odbridge.monitors
"""
import sys

from .state_monitor import main

if __name__ == "__main__":
    sys.exit(main())
