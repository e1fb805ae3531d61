#!/usr/bin/env python3
"""
Daily CSV Export

Writes the cache's day records as one CSV row per protocol day.

Usage:
    python scripts/export_daily_csv.py --out outputs/torus_daily.csv
    python scripts/export_daily_csv.py --display   # add scaled *_fmt columns
"""

import sys
import argparse
from pathlib import Path

# Add parent to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from torus_sync.cache import CacheStore
from torus_sync.errors import SyncError
from torus_sync.report import document_frame
from torus_sync.settings import load_settings


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--config", type=str, help="YAML settings file")
    ap.add_argument("--cache", type=str, help="cache JSON path (overrides cache.path)")
    ap.add_argument("--out", type=str, default="outputs/torus_daily.csv")
    ap.add_argument("--display", action="store_true", help="include human-readable amount columns")
    args = ap.parse_args()

    try:
        settings = load_settings(args.config)
        doc = CacheStore(args.cache or settings.cache.path, backup=False).load()
        df = document_frame(doc, settings.epoch_start, display=args.display)
    except SyncError as e:
        print(f"[ERROR] {type(e).__name__}: {e}", file=sys.stderr)
        return 1

    out = Path(args.out)
    out.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(out, index=False)
    print(f"[ok] wrote {len(df)} day(s) -> {out}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
