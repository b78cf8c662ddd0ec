#!/usr/bin/env python3
"""Run the echo server or one of the probes from a source checkout.

Usage examples:
  - python scripts/run_probe.py serve --port 8079
  - python scripts/run_probe.py ping 127.0.0.1:8079 -n 50

Same arguments as the installed ``echoskew`` command.
"""

from __future__ import annotations

import sys
from pathlib import Path


# Ensure src is on sys.path when running without installing
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from echoskew.app.main import main  # type: ignore  # noqa: E402


if __name__ == "__main__":
    sys.exit(main())
