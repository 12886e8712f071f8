"""
Milestone CLI tool.

Inspects and seeds milestone snapshots in MongoDB:
- get: Latest snapshot at or below a version
- before: Latest snapshot at or before a timestamp
- after: Earliest snapshot at or after a timestamp
- save: Save a snapshot read from a JSON file

Usage:
    milestone-db get --collection docs --id abc --version 10
    milestone-db before --collection docs --id abc --timestamp 1700000000000
    milestone-db save --collection docs --file snapshot.json

Connection settings come from the environment (see config.py); --mongo-url
overrides MONGO_URL.

Invariants:
    - Snapshots are printed as sorted JSON on stdout
    - Exit code 1 when no snapshot matches or the input is invalid
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace
from typing import Any

from ..config import StoreConfig
from ..errors import MilestoneDbError
from ..observability import setup_logging
from ..snapshot import Snapshot
from ..store import MilestoneStore

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="milestone-db",
        description="Inspect and seed milestone snapshots",
    )
    parser.add_argument("--mongo-url", help="MongoDB URL (overrides MONGO_URL)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    subparsers = parser.add_subparsers(dest="command", required=True)

    get_parser = subparsers.add_parser("get", help="Get snapshot by version")
    get_parser.add_argument("--collection", required=True, help="Logical collection name")
    get_parser.add_argument("--id", required=True, help="Document ID")
    get_parser.add_argument("--version", type=int, help="Version upper bound (default: latest)")

    for name, help_text in (
        ("before", "Get latest snapshot at or before a timestamp"),
        ("after", "Get earliest snapshot at or after a timestamp"),
    ):
        time_parser = subparsers.add_parser(name, help=help_text)
        time_parser.add_argument("--collection", required=True, help="Logical collection name")
        time_parser.add_argument("--id", required=True, help="Document ID")
        time_parser.add_argument("--timestamp", type=int, help="Unix timestamp in milliseconds")

    save_parser = subparsers.add_parser("save", help="Save a snapshot from a JSON file")
    save_parser.add_argument("--collection", required=True, help="Logical collection name")
    save_parser.add_argument("--file", required=True, help="JSON file with id, v, type, data, m")

    return parser


def load_snapshot(path: str) -> Snapshot:
    """Read a snapshot from a JSON file.

    Raises:
        OSError: If the file cannot be read
        json.JSONDecodeError: If the file is not valid JSON
        InvalidSnapshotError: If the JSON is not a snapshot object
    """
    with open(path) as f:
        return Snapshot.from_dict(json.load(f))


async def run_command(store: MilestoneStore, args: argparse.Namespace) -> Any:
    """Run one CLI command against a store.

    Returns:
        Snapshot for lookups (None if not found), True for a save
    """
    if args.command == "get":
        return await store.get_milestone_snapshot(args.collection, args.id, args.version)
    if args.command == "before":
        return await store.get_milestone_snapshot_at_or_before_time(
            args.collection, args.id, args.timestamp
        )
    if args.command == "after":
        return await store.get_milestone_snapshot_at_or_after_time(
            args.collection, args.id, args.timestamp
        )
    if args.command == "save":
        snapshot = getattr(args, "snapshot", None) or load_snapshot(args.file)
        await store.save_milestone_snapshot(args.collection, snapshot)
        return True
    raise ValueError(f"Unknown command: {args.command}")


async def _run(config: StoreConfig, args: argparse.Namespace) -> Any:
    store = MilestoneStore.from_config(config)
    try:
        return await run_command(store, args)
    finally:
        await store.close()


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Bad input files fail before any connection is attempted
    if args.command == "save":
        try:
            args.snapshot = load_snapshot(args.file)
        except (OSError, json.JSONDecodeError) as e:
            print(f"Error: cannot read snapshot file {args.file}: {e}", file=sys.stderr)
            sys.exit(1)
        except MilestoneDbError as e:
            print(f"Error [{e.code}]: {e.message}", file=sys.stderr)
            sys.exit(1)

    config = StoreConfig.from_env()
    if args.mongo_url:
        config = replace(config, mongo=replace(config.mongo, url=args.mongo_url))
        config.validate()
    if args.verbose:
        config = replace(
            config, observability=replace(config.observability, log_level="DEBUG")
        )

    setup_logging(config.observability)
    config.log_config()

    try:
        result = asyncio.run(_run(config, args))
    except MilestoneDbError as e:
        print(f"Error [{e.code}]: {e.message}", file=sys.stderr)
        sys.exit(1)

    if result is True:
        print("Snapshot saved")
        sys.exit(0)
    if result is None:
        print("No milestone snapshot found", file=sys.stderr)
        sys.exit(1)

    print(json.dumps(result.to_dict(), indent=2, sort_keys=True, default=str))
    sys.exit(0)


if __name__ == "__main__":
    main()
