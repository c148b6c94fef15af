#!/usr/bin/env python3
"""
VM Power Operation Tool

Issues power actions (power on/off, reboot, suspend, reset) against the
Cloud Director API and tracks each operation until it finishes.

Runs directly from a source checkout: the local `src/` directory is added to
sys.path. For regular use, install the project and use the `vm-power` script.
"""

import os
import sys

REPO_ROOT = os.path.dirname(os.path.abspath(__file__))
SRC_PATH = os.path.join(REPO_ROOT, "src")
if SRC_PATH not in sys.path:
    sys.path.insert(0, SRC_PATH)

from cli import main

if __name__ == "__main__":
    sys.exit(main())
