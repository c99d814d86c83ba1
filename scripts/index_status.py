#!/usr/bin/env python3
"""Operator probe: how far behind the chain tip is the indexer?

Usage:
    uv run python scripts/index_status.py
    uv run python scripts/index_status.py --max-lag 500

Reads DATABASE_URL, SUI_RPC_URL and SUIMEET_PACKAGE_ID from the environment
or the .env file. Prints the chain tip, the stored cursor, the lag between
them and the number of dead-lettered checkpoints still awaiting a retry.

Exit code 0 if the lag is within --max-lag (when given), 1 otherwise.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

# Ensure project root is on sys.path so we can import src.indexer
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))


async def collect_status() -> list[tuple[str, str]]:
    """Query the ledger and the store for the current indexing position."""
    from src.indexer.config import get_settings
    from src.indexer.core.database import create_engine_for_url
    from src.indexer.ledger.client import SuiRpcClient
    from src.indexer.store.sink import CommitSink

    settings = get_settings()
    client = SuiRpcClient(settings.SUI_RPC_URL, timeout=settings.RPC_TIMEOUT)
    sink = CommitSink(create_engine_for_url(settings.DATABASE_URL), settings.INDEXER_NAME)
    try:
        tip = await client.latest_checkpoint_number()
        cursor = await sink.latest_checkpoint()
        pending = await sink.count_pending_failures(settings.DEAD_LETTER_MAX_ATTEMPTS)
    finally:
        await client.close()
        await sink.close()

    return [
        ("network", settings.SUI_NETWORK),
        ("chain_tip", str(tip)),
        ("cursor", str(cursor)),
        ("lag", str(max(tip - cursor, 0))),
        ("dead_letters_pending", str(pending)),
    ]


def print_status(rows: list[tuple[str, str]]) -> None:
    """Print a formatted table of status values."""
    separator = "-" * 50
    print()
    print(separator)
    for name, value in rows:
        print(f"{name:<25} {value}")
    print(separator)
    print()


def main() -> None:
    parser = argparse.ArgumentParser(description="Show SuiMeet indexer progress")
    parser.add_argument(
        "--max-lag",
        type=int,
        default=None,
        help="Exit with status 1 when the indexer is more than this many checkpoints behind",
    )
    args = parser.parse_args()

    rows = asyncio.run(collect_status())
    print_status(rows)

    lag = int(dict(rows)["lag"])
    if args.max_lag is not None and lag > args.max_lag:
        print(f"Indexer is {lag} checkpoints behind (limit {args.max_lag}).")
        sys.exit(1)
    sys.exit(0)


if __name__ == "__main__":
    main()
