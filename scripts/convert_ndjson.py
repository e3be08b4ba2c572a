#!/usr/bin/env python
"""
Convert an NDJSON annotation export to a dataset archive.

Usage:
    python scripts/convert_ndjson.py <input.ndjson> <output.zip> [--format yolo] [--no-images]
"""

import sys
import asyncio
import argparse
import logging
from pathlib import Path

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from converter.config import ConverterSettings, DOWNLOAD_CONCURRENCY
from converter.errors import ConversionCancelled, ConversionError
from converter.formats import available_formats
from converter.models import Phase
from converter.pipeline import ConversionJob, ConvertRequest


async def _print_progress(queue: asyncio.Queue):
    """Print one line per phase change and a running counter in between."""
    phase = None
    while True:
        event = await queue.get()
        if event.phase != phase:
            if phase is not None:
                print()
            phase = event.phase
        label = event.phase.value.capitalize()
        total = event.total if event.phase != Phase.PARSING else "?"
        print(f"\r  {label}: {event.current}/{total}", end="", flush=True)


async def run(args) -> int:
    queue: asyncio.Queue = asyncio.Queue()
    job = ConversionJob(
        ConvertRequest(
            file_path=args.input,
            format=args.format,
            output_path=args.output,
            include_images=not args.no_images,
        ),
        progress_channel=queue,
        settings=ConverterSettings(download_concurrency=args.concurrency),
    )
    printer = asyncio.create_task(_print_progress(queue))

    try:
        report = await job.run()
    except ConversionCancelled:
        print("\n✗ Conversion cancelled")
        return 130
    except ConversionError as e:
        print(f"\n✗ Conversion failed: {e}")
        return 1
    finally:
        await asyncio.sleep(0)
        printer.cancel()

    print(f"\n\nConversion Report:")
    print(f"  Archive: {report.zip_path}")
    print(f"  Files: {report.file_count}")
    print(f"  Images: {report.image_count}")
    if report.download_total is not None:
        print(f"  Failed downloads: {report.failed_downloads}/{report.download_total}")
    print(f"  Dropped annotations: {report.dropped_annotations}")

    if report.warnings:
        print(f"\nWarnings:")
        for warning in report.warnings[:20]:
            print(f"  ⚠ {warning}")

    print(f"\n✓ Conversion complete: {report.zip_path}")
    return 0


def main():
    format_ids = [entry["id"] for entry in available_formats()]

    parser = argparse.ArgumentParser(description="Convert an NDJSON export to a dataset archive")
    parser.add_argument("input", help="Path to the NDJSON export")
    parser.add_argument("output", help="Path of the ZIP archive to write")
    parser.add_argument("--format", default="yolo", help=f"Output format ({', '.join(format_ids)})")
    parser.add_argument("--no-images", action="store_true", help="Only write labels, skip image downloads")
    parser.add_argument(
        "--concurrency", type=int, default=DOWNLOAD_CONCURRENCY,
        help=f"Maximum parallel downloads (default: {DOWNLOAD_CONCURRENCY})"
    )
    parser.add_argument("--verbose", action="store_true", help="Show debug logging")

    args = parser.parse_args()
    if args.concurrency < 1:
        parser.error("--concurrency must be at least 1")

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    print(f"Converting: {args.input}")
    print(f"Format: {args.format}")
    print(f"Output: {args.output}")
    print("-" * 50)

    try:
        code = asyncio.run(run(args))
    except KeyboardInterrupt:
        print("\n✗ Interrupted")
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    main()
