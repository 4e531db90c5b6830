#!/usr/bin/env python3
"""
Asset management CLI

Validates and migrates asset sidecar JSON files under <site>/assets/ to
conform to AssetSidecar.schema.json, and writes a static JSON catalog of
every asset for hosts that serve the site without this app.

Usage:
  python manage_assets.py validate [--site-dir DIR]
  python manage_assets.py index [--site-dir DIR] [--output FILE]
"""

from __future__ import annotations

import argparse
import os
import sys
import time
from pathlib import Path

import assets


DEFAULT_SITE_DIR = Path(os.getenv("DAM_SITE_DIR", str(Path(__file__).resolve().parent / "site")))


def validate(site_dir: Path) -> int:
    assets_dir = site_dir / assets.ASSETS_FOLDER
    if not assets_dir.is_dir():
        print(f"[error] Assets directory not found: {assets_dir}")
        return 1
    counts = assets.validate_and_migrate_sidecars(site_dir)
    print(
        f"Validated {counts['total']} assets; created {counts['created']} "
        f"and updated {counts['updated']} sidecars."
    )
    return 0


def write_index(site_dir: Path, output: Path) -> int:
    if not (site_dir / assets.ASSETS_FOLDER).is_dir():
        print(f"[error] Assets directory not found: {site_dir / assets.ASSETS_FOLDER}")
        return 1
    records = assets.scan_assets(site_dir)
    doc = {"generated_at": time.time(), "assets": records}
    assets.atomic_write_json(output, doc)
    print(f"Wrote {len(records)} assets to {output}.")
    return 0


def main(argv: list[str]) -> int:
    parser = argparse.ArgumentParser(description="Maintain asset sidecars and the static catalog.")
    parser.add_argument("--site-dir", type=Path, default=DEFAULT_SITE_DIR, help="Site root containing assets/")
    sub = parser.add_subparsers(dest="cmd", required=True)
    sub.add_parser("validate", help="Validate and migrate sidecars under assets/")
    index_parser = sub.add_parser("index", help="Write a JSON catalog of all assets")
    index_parser.add_argument("--output", type=Path, default=None, help="Defaults to <site-dir>/assets.json")
    args = parser.parse_args(argv)

    if args.cmd == "validate":
        return validate(args.site_dir)
    if args.cmd == "index":
        return write_index(args.site_dir, args.output or args.site_dir / "assets.json")
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
