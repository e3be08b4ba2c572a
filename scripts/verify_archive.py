#!/usr/bin/env python
"""
Check a YOLO dataset archive written by convert_ndjson.py.

Prints what data.yaml declares, then every malformed label line.

Usage:
    python scripts/verify_archive.py <archive.zip> [--max-errors 20]
"""

import sys
import argparse
import zipfile
from pathlib import Path

import yaml

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from converter.verify import verify_yolo_archive


def describe(zip_path: str) -> None:
    """Print the dataset summary from data.yaml and the label file count."""
    try:
        with zipfile.ZipFile(zip_path) as zf:
            names = zf.namelist()
            config = yaml.safe_load(zf.read("data.yaml")) if "data.yaml" in names else None
    except (OSError, zipfile.BadZipFile, yaml.YAMLError):
        return

    labels = [n for n in names if "/labels/" in n and n.endswith(".txt")]
    print(f"  Entries: {len(names)} ({len(labels)} label files)")
    if config:
        print(f"  Classes: {config.get('nc', '?')}")
        if config.get("kpt_shape"):
            num_kpts, dims = config["kpt_shape"]
            print(f"  Keypoints: {num_kpts} per instance, {dims} values each")


def main():
    parser = argparse.ArgumentParser(description="Verify a YOLO dataset archive")
    parser.add_argument("archive", help="Path to the ZIP archive")
    parser.add_argument("--max-errors", type=int, default=20, help="Errors to print (default: 20)")
    args = parser.parse_args()

    print(f"Archive: {args.archive}")
    describe(args.archive)

    is_valid, errors = verify_yolo_archive(args.archive)
    if is_valid:
        print("\n✓ All label files are well-formed")
        sys.exit(0)

    print(f"\n✗ {len(errors)} problem(s):")
    for error in errors[:args.max_errors]:
        print(f"  - {error}")
    hidden = len(errors) - args.max_errors
    if hidden > 0:
        print(f"  ... {hidden} more not shown")
    sys.exit(1)


if __name__ == "__main__":
    main()
