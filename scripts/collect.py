#!/usr/bin/env python3
"""
Operator CLI for the war collector.

Runs one-off collections and maintenance against the same JSON stores the
API serves, or hosts the scheduler without the HTTP layer.

Usage:
    # Collect the current regular war once
    python scripts/collect.py wars

    # Collect the current CWL season (all rounds) once
    python scripts/collect.py league

    # Remove duplicate CWL wars left by pre-tag collections
    python scripts/collect.py dedupe

    # Store counts and last write
    python scripts/collect.py stats

    # Verify token / IP allow-list against the API
    python scripts/collect.py check

    # Run the scheduler in the foreground until SIGINT/SIGTERM
    python scripts/collect.py serve-scheduler
"""

import argparse
import asyncio
import json
import logging
import signal
import sys

from warcollector import state
from warcollector.config import get_settings
from warcollector.etl.base import ProviderError
from warcollector.etl.coc_api import ClashOfClansProvider
from warcollector.etl.pipeline import CollectionPipeline
from warcollector.scheduler import CollectionScheduler, start_scheduler, stop_scheduler
from warcollector.storage import StorageError

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def _print(data: dict) -> None:
    print(json.dumps(data, indent=2, default=str))


def _pipeline(provider: ClashOfClansProvider) -> CollectionPipeline:
    return CollectionPipeline(provider, state.match_store, state.league_store)


async def collect_wars() -> int:
    provider = ClashOfClansProvider()
    try:
        result = await _pipeline(provider).collect_current_match()
    finally:
        await provider.close()
    _print(result.to_dict())
    return 0


async def collect_league() -> int:
    provider = ClashOfClansProvider()
    try:
        result = await _pipeline(provider).collect_league_group()
    finally:
        await provider.close()
    _print(result.to_dict())
    return 0 if result.rounds.failed == 0 else 2


def dedupe() -> int:
    report = state.league_store.dedupe()
    logger.info(f"Dedup: {report.before} -> {report.after} league wars ({report.removed} removed)")
    _print(report.to_dict())
    return 0


def stats() -> int:
    _print(
        {
            "wars": state.match_store.stats().to_dict(),
            "league_wars": state.league_store.stats().to_dict(),
            "seasons": [s.model_dump(mode="json") for s in state.league_store.list_seasons()],
        }
    )
    return 0


async def check() -> int:
    settings = get_settings()
    provider = ClashOfClansProvider()
    try:
        status = await provider.check_connection(settings.CLAN_TAG)
        if status["status"] == "ok":
            try:
                group = await provider.fetch_current_league_group(settings.CLAN_TAG)
                status["league_group"] = (
                    {"season": group.get("season"), "state": group.get("state"), "clans": len(group.get("clans") or [])}
                    if group
                    else None
                )
            except ProviderError as e:
                status["league_group_error"] = str(e)
    finally:
        await provider.close()

    _print(status)
    if status["status"] == "forbidden":
        logger.error("Token rejected. Keys are bound to IP addresses: check the allow-list on the developer portal.")
    return 0 if status["status"] == "ok" else 1


async def serve_scheduler() -> int:
    provider = ClashOfClansProvider()
    collection_scheduler = CollectionScheduler(_pipeline(provider))

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    start_scheduler(collection_scheduler)
    logger.info("Scheduler is running. Press Ctrl+C to stop.")
    try:
        await stop.wait()
    finally:
        logger.info("Shutting down scheduler...")
        stop_scheduler()
        await provider.close()
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Clash of Clans war collector")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("wars", help="Collect the current regular war once")
    sub.add_parser("league", help="Collect the current CWL season once")
    sub.add_parser("dedupe", help="Remove duplicate CWL wars")
    sub.add_parser("stats", help="Show store statistics")
    sub.add_parser("check", help="Test API credentials and reachability")
    sub.add_parser("serve-scheduler", help="Run the collection scheduler in the foreground")
    args = parser.parse_args()

    try:
        if args.command == "wars":
            return asyncio.run(collect_wars())
        if args.command == "league":
            return asyncio.run(collect_league())
        if args.command == "dedupe":
            return dedupe()
        if args.command == "stats":
            return stats()
        if args.command == "check":
            return asyncio.run(check())
        return asyncio.run(serve_scheduler())
    except (ProviderError, StorageError, ValueError) as e:
        logger.error(f"{args.command} failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
