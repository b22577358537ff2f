#!/usr/bin/env python3
"""
Generate postcards for a book title or a list of places.

This script:
1. Extracts locations from the input (built-in sample extractor)
2. Resolves an image for every location concurrently
3. Prints live progress per card, then the final postcards (or JSON)

Usage:
    python scripts/generate_postcards.py "One Hundred Years of Solitude"
    python scripts/generate_postcards.py --mode place "Kyoto, Lisbon, Reykjavik"
    python scripts/generate_postcards.py "The Great Gatsby" --json --log-level DEBUG
"""

import argparse
import json
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from api import APIError, generate_postcards_sync  # noqa: E402
from config import load_settings  # noqa: E402
from exceptions import LocationNotRecognizedError  # noqa: E402
from logging_config import setup_logging  # noqa: E402


def main() -> int:
    parser = argparse.ArgumentParser(description="Generate BookVibe postcards")
    parser.add_argument("text", help="Book title, or comma-separated places with --mode place")
    parser.add_argument("--mode", choices=["book", "place"], default="book")
    parser.add_argument("--user-config", type=Path, help="Persisted user settings JSON file")
    parser.add_argument("--json", action="store_true", help="Print the final records as JSON")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL (e.g. DEBUG)")
    parser.add_argument("--log-file", type=Path, help="Also append logs to this file")
    args = parser.parse_args()

    settings = load_settings(user_config_path=args.user_config)
    setup_logging("", level=args.log_level or settings.log_level, log_file=args.log_file)

    def on_progress(index: int, stage: str) -> None:
        print(f"  [{index}] {stage}...")

    def on_result(index: int, url: str) -> None:
        print(f"  [{index}] done: {url}")

    try:
        result = generate_postcards_sync(
            args.text,
            mode=args.mode,
            settings=settings,
            on_progress=None if args.json else on_progress,
            on_result=None if args.json else on_result,
        )
    except LocationNotRecognizedError as e:
        print(f"Not recognized: {e}", file=sys.stderr)
        return 2
    except APIError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.json:
        payload = [record.model_dump(by_alias=True) for record in result.records]
        print(json.dumps(payload, ensure_ascii=False, indent=2))
        return 0

    print()
    for record, task in zip(result.records, result.tasks):
        marker = "" if task.status.state == "succeeded" else " (fallback)"
        print(f"{record.location} [{record.kind}]{marker}")
        if record.quote:
            print(f"  \"{record.quote}\"")
        print(f"  {record.image_url}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
