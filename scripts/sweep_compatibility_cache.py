#!/usr/bin/env python3
"""
Kindred — Compatibility Cache Manager CLI

Maintenance script for the compatibility cache.  Provides three subcommands:

  stats       — Report entry counts and the oldest / newest computation.
  sweep       — Delete every expired entry (intended for cron).
  invalidate  — Delete every entry involving one user.

Usage examples
--------------
  # Show cache statistics
  python scripts/sweep_compatibility_cache.py stats

  # Nightly cleanup
  python scripts/sweep_compatibility_cache.py sweep

  # Force recomputation for a user
  python scripts/sweep_compatibility_cache.py invalidate --user-id 6f1c...
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
import uuid

# Ensure the project root is importable
sys.path.insert(0, ".")

from app.database import get_engine, session_scope
from app.services.compatibility_cache import CompatibilityCache


# ──────────────────────────────────────────────────────────────────────────────
# Subcommand: stats
# ──────────────────────────────────────────────────────────────────────────────

async def cmd_stats(args: argparse.Namespace) -> None:
    cache = CompatibilityCache()

    async with session_scope() as session:
        stats = await cache.stats(session)

    print(f"\n{'=' * 60}")
    print("  Compatibility Cache Statistics")
    print(f"{'=' * 60}")
    print(f"  Total entries:     {stats['total_entries']}")
    print(f"  Expired entries:   {stats['expired_entries']}")
    print(f"  Oldest entry:      {stats['oldest_entry'] or '-'}")
    print(f"  Newest entry:      {stats['newest_entry'] or '-'}")
    print(f"{'=' * 60}\n")

    if args.json:
        print(json.dumps(stats, indent=2, default=str))


# ──────────────────────────────────────────────────────────────────────────────
# Subcommand: sweep
# ──────────────────────────────────────────────────────────────────────────────

async def cmd_sweep(args: argparse.Namespace) -> None:
    cache = CompatibilityCache()

    async with session_scope() as session:
        deleted = await cache.sweep_expired(session)

    print(f"Deleted {deleted} expired compatibility entries.")


# ──────────────────────────────────────────────────────────────────────────────
# Subcommand: invalidate
# ──────────────────────────────────────────────────────────────────────────────

async def cmd_invalidate(args: argparse.Namespace) -> None:
    cache = CompatibilityCache()

    try:
        user_id = uuid.UUID(args.user_id)
    except ValueError:
        print(f"Invalid user id: {args.user_id!r}", file=sys.stderr)
        sys.exit(2)

    async with session_scope() as session:
        deleted = await cache.invalidate_for_user(user_id, session)

    print(f"Deleted {deleted} compatibility entries involving {user_id}.")


async def _run(handler, args: argparse.Namespace) -> None:
    try:
        await handler(args)
    finally:
        await get_engine().dispose()


# ──────────────────────────────────────────────────────────────────────────────
# CLI entry point
# ──────────────────────────────────────────────────────────────────────────────

def main() -> None:
    parser = argparse.ArgumentParser(
        description="Kindred compatibility cache maintenance.",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        help="Available subcommands",
    )

    stats_parser = subparsers.add_parser(
        "stats",
        help="Report cache entry counts.",
    )
    stats_parser.add_argument(
        "--json",
        action="store_true",
        default=False,
        help="Also output raw JSON data.",
    )

    subparsers.add_parser(
        "sweep",
        help="Delete expired cache entries.",
    )

    invalidate_parser = subparsers.add_parser(
        "invalidate",
        help="Delete every cache entry involving a user.",
    )
    invalidate_parser.add_argument(
        "--user-id",
        required=True,
        help="UUID of the user whose entries should be dropped.",
    )

    args = parser.parse_args()

    handlers = {
        "stats": cmd_stats,
        "sweep": cmd_sweep,
        "invalidate": cmd_invalidate,
    }
    handler = handlers.get(args.command)
    if handler is None:
        parser.print_help()
        sys.exit(1)

    asyncio.run(_run(handler, args))


if __name__ == "__main__":
    main()
