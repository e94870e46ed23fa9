#!/usr/bin/env python
"""Match every weighbridge ticket in the inbox folder against pending invoices."""

import argparse
import os
import sys

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from errors import LockedError
from weighbridge_processor import main as run


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("--dir", help="weighbridge inbox (default: paths.weighbridge_dir)")
    parser.add_argument("--no-summary", action="store_true", help="skip the Slack batch summary")
    args = parser.parse_args()

    try:
        summary = run(args.dir, notify_summary=not args.no_summary)
    except LockedError as e:
        print(f"🔒 Another run is in progress: {e}")
        sys.exit(2)
    sys.exit(1 if summary["failed"] else 0)
