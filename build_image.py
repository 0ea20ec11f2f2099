#!/usr/bin/env python3
"""
Image build runbook.

Usage:
    python build_image.py provision --host ... # launch and wait for remote desktop
    python build_image.py capture --host H     # capture, generalize, import
    python build_image.py run ...              # both, with a confirmation prompt
    python build_image.py status --host H      # show current state
"""

from image_toolkit.workflow.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
