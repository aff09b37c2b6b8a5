#!/usr/bin/env python3
"""Command line runner for the ProtoPedia snapshot cache."""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from contextlib import suppress
from typing import List, Optional

from rich.console import Console
from rich.table import Table

from logger import get_logger, info_domain, setup_logging
from protocache.config import AppConfig, load_config
from protocache.results import SnapshotFailure, SnapshotResult
from protocache.services.fetcher_http import ProtoPediaFetcher
from protocache.services.repository import SnapshotRepository

logger = get_logger("protocache.main")
console = Console()


def _build_repository(config: AppConfig) -> tuple[SnapshotRepository, ProtoPediaFetcher]:
    fetcher = ProtoPediaFetcher(config.fetcher)
    repository = SnapshotRepository(
        fetcher,
        store_config=config.store,
        enable_events=config.enable_events,
    )
    if repository.events is not None:
        repository.events.on(
            "snapshot_started",
            lambda operation: logger.debug("Snapshot %s started", operation),
        )
    return repository, fetcher


def _render_result(result: SnapshotResult) -> None:
    if isinstance(result, SnapshotFailure):
        console.print(
            f"[red]Snapshot failed[/red] origin={result.origin} kind={result.kind} "
            f"code={result.code} status={result.status}: {result.message}"
        )
        return

    stats = result.stats
    table = Table(title="Snapshot")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("prototypes", str(stats.size))
    table.add_row("data size (bytes)", str(stats.data_size_bytes))
    table.add_row("cached at", stats.cached_at.isoformat() if stats.cached_at else "-")
    table.add_row("remaining ttl (ms)", str(stats.remaining_ttl_ms))
    console.print(table)


async def _command_snapshot(config: AppConfig, sample: int) -> int:
    repository, fetcher = _build_repository(config)
    try:
        result = await repository.setup_snapshot(config.fetch_params)
        _render_result(result)
        if not result.ok:
            return 1
        analysis = await repository.analyze_prototypes()
        console.print(f"id range: {analysis.min}..{analysis.max}")
        for prototype in await repository.get_random_sample_from_snapshot(sample):
            console.print(f"  #{prototype.id} {prototype.prototype_nm}")
        return 0
    finally:
        await fetcher.aclose()


async def _command_watch(config: AppConfig, interval: float) -> int:
    repository, fetcher = _build_repository(config)
    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):  # pragma: no cover - platform specific
            continue

    try:
        result = await repository.setup_snapshot(config.fetch_params)
        _render_result(result)
        while not stop_event.is_set():
            with suppress(asyncio.TimeoutError):
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            if stop_event.is_set():
                break
            if repository.get_stats().is_expired:
                _render_result(await repository.refresh_snapshot())
        info_domain("protocache.main", "Watcher stopped", stage="WATCH_STOP")
        return 0
    finally:
        await fetcher.aclose()


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="ProtoPedia snapshot cache")
    parser.add_argument("--env-file", default=None, help="Path to a .env file")
    subparsers = parser.add_subparsers(dest="command")

    snapshot_parser = subparsers.add_parser("snapshot", help="Fetch one snapshot and print it")
    snapshot_parser.add_argument("--sample", type=int, default=5)
    snapshot_parser.set_defaults(
        func=lambda args, config: _command_snapshot(config, args.sample)
    )

    watch_parser = subparsers.add_parser("watch", help="Keep the snapshot fresh until stopped")
    watch_parser.add_argument("--interval", type=float, default=60.0)
    watch_parser.set_defaults(
        func=lambda args, config: _command_watch(config, args.interval)
    )

    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    setup_logging()
    config = load_config(args.env_file)
    return asyncio.run(args.func(args, config))


if __name__ == "__main__":
    sys.exit(main())
