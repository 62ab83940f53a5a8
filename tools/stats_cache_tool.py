#!/usr/bin/env python3
"""
Inspect and maintain the durable stats cache.
Run from project root: python3 tools/stats_cache_tool.py info
"""

import argparse
import os
import sys

# Get script directory and resolve project root
# If we're in tools/, go up one level to project root
SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
if os.path.basename(SCRIPT_DIR) == 'tools':
    PROJECT_ROOT = os.path.dirname(SCRIPT_DIR)
else:
    PROJECT_ROOT = SCRIPT_DIR

if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from core.config import is_valid_series
from web.config import DATA_DIR, LOGS_DIR, SETTINGS_FILE
from web.services import build_stats_cache, load_config


def print_info(service, known_series=()) -> None:
    info = service.get_cache_info()
    cached = {entry["series"] for entry in info["series"]}

    print("=" * 80)
    print("STATS CACHE")
    print("=" * 80)

    if not info["series"]:
        print("\nNo cached series.")
    for entry in info["series"]:
        if entry.get("malformed"):
            print(f"\n🔴 {entry['series']}: malformed ({entry.get('detail', '')})")
            continue
        marker = "🟡" if entry["expired"] else "✅"
        state = "expired" if entry["expired"] else "fresh"
        print(f"\n{marker} {entry['series']}: {entry['count']} images, "
              f"{entry['age_minutes']} min old ({state})")
        print(f"   fetched at {entry['fetched_at']}")

    for series in known_series:
        if series not in cached:
            print(f"\n⚪ {series}: not cached")

    queue = info["optimistic_queue"]
    print(f"\nPending views:     {sum(queue['views'].values())} across {len(queue['views'])} images")
    print(f"Pending downloads: {sum(queue['downloads'].values())} across {len(queue['downloads'])} images")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Inspect and maintain the Wallstats stats cache")
    parser.add_argument("--settings", default=str(SETTINGS_FILE), help="Path to the settings file")

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("info", help="Show cached series and their age")
    subparsers.add_parser("purge", help="Remove expired and malformed entries")
    clear = subparsers.add_parser("clear", help="Remove cached entries")
    clear.add_argument("--series", help="Only clear this series")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.settings, data_dir=DATA_DIR, logs_dir=LOGS_DIR)
    except (ValueError, TypeError) as e:
        print(f"⚠️  Could not load settings: {e}")
        return 1

    service = build_stats_cache(config)

    if args.command == "info":
        print_info(service, config.cache.series)
    elif args.command == "purge":
        purged = service.purge_expired()
        print(f"Purged {purged} stale entries")
    elif args.command == "clear":
        if args.series:
            if not is_valid_series(args.series):
                print(f"⚠️  Invalid series name: {args.series}")
                return 1
            removed = service.clear_series_cache(args.series)
            print(f"Cleared '{args.series}'" if removed else f"No cache entry for '{args.series}'")
        else:
            removed = service.clear_all_cache()
            print(f"Cleared {removed} cached series")
    return 0


if __name__ == "__main__":
    sys.exit(main())
