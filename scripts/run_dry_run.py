#!/usr/bin/env python3
"""
Dry Run - Preview one or more planning weeks on the console

Usage:
  python scripts/run_dry_run.py --week 2025-05-05 --weeks 2 --auto-fill

Reads the snapshot from config/ unless --config-dir is given.
"""

import sys
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from medplan.dry_run import main

if __name__ == "__main__":
    main()
