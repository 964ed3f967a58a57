#!/usr/bin/env python3
"""
Entry point for volume-rbd CLI tool.
"""

import sys

from volume_rbd.cli.cli import main

if __name__ == "__main__":
    sys.exit(main())
