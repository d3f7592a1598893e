#!/usr/bin/env python3
"""
Liftcoach
Main entry point for the application.
"""

import sys

from liftcoach.cli import main


if __name__ == "__main__":
    sys.exit(main())
