"""
Command line access to the local sync state.

Usage:
    plant-care-sync status
    plant-care-sync sync --config ~/.plant_care_sync/config.yaml
    plant-care-sync clear-cache

Without --config the configuration is read from PLANT_SYNC_* environment
variables. Command output goes to stdout; logs go to stderr.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from .config import SyncConfig
from .exceptions import SyncStorageError
from .local.cache import ReadCache
from .logging_utils import configure_structured_logging
from .sync.engine import create_local_store, create_sync_engine
from .sync.queue import MutationQueue


def load_config(path: str | None) -> SyncConfig:
    if path:
        return SyncConfig.from_yaml(path)
    return SyncConfig.from_environment()


async def show_status(config: SyncConfig) -> dict[str, Any]:
    """Pending mutations, without contacting the remote."""
    store = await create_local_store(config)
    try:
        queue = MutationQueue(store)
        entries = await queue.peek_all()
        return {
            "pending": len(entries),
            "entries": [
                {
                    "id": e.id,
                    "type": e.entity_type.value,
                    "action": e.operation.value if e.operation else None,
                    "createdAt": e.enqueued_at,
                }
                for e in entries
            ],
        }
    finally:
        await store.close()


async def run_sync(config: SyncConfig) -> dict[str, Any]:
    """Run one sync pass against the configured remote."""
    engine = await create_sync_engine(config)
    try:
        result = await engine.sync_all()
        return result.to_dict()
    finally:
        await engine.close()


async def clear_cache(config: SyncConfig) -> dict[str, Any]:
    """Drop cached reads; queued mutations are kept."""
    store = await create_local_store(config)
    try:
        cleared = await ReadCache(store).clear()
        return {"cleared": cleared}
    finally:
        await store.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="plant-care-sync",
        description="Inspect and replay offline plant care changes",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Show queued mutations
    plant-care-sync status

    # Replay queued mutations against the hosted backend
    PLANT_SYNC_REMOTE_URL="https://..." \\
    PLANT_SYNC_REMOTE_API_KEY="..." \\
    plant-care-sync sync
        """,
    )
    parser.add_argument("--config", help="YAML settings file (reads the 'sync' section)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("status", help="Show pending mutations")
    subparsers.add_parser("sync", help="Run one sync pass")
    subparsers.add_parser("clear-cache", help="Remove cached reads")
    return parser


COMMANDS = {
    "status": show_status,
    "sync": run_sync,
    "clear-cache": clear_cache,
}


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_structured_logging(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        logger_name="plant_care_sync",
    )

    try:
        config = load_config(args.config)
        output = asyncio.run(COMMANDS[args.command](config))
    except SyncStorageError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    print(json.dumps(output, indent=2))

    if args.command == "sync" and not output["success"]:
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
