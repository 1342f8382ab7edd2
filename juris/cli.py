"""Command-line entry point for ingestion runs."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Any

from .config import Settings, Tribunal, get_settings
from .errors import ConfigurationError
from .logging_config import setup_logging
from .pipelines.ingest import RunStats, build_pipeline

logger = logging.getLogger(__name__)


def load_items(path: Path) -> list[dict[str, Any]]:
    """Read raw results from a JSON array or a JSON-lines file."""
    content = path.read_text(encoding="utf-8").strip()
    if not content:
        return []
    if content.startswith("["):
        items = json.loads(content)
    else:
        items = [json.loads(line) for line in content.splitlines() if line.strip()]
    if not all(isinstance(item, dict) for item in items):
        raise ValueError(f"{path} must contain JSON objects")
    return items


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="juris",
        description="Ingest court decisions into the decision store.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("check-config", help="Show the active configuration and check credentials.")
    sub.add_parser("init-db", help="Create extensions, tables, indexes and triggers.")

    ingest = sub.add_parser("ingest", help="Ingest raw results from a JSON or JSON-lines file.")
    ingest.add_argument("file", type=Path)
    ingest.add_argument("--no-fetch", action="store_true", help="Do not fetch detail pages.")
    ingest.add_argument("--no-embeddings", action="store_true", help="Skip embedding generation.")

    scrape = sub.add_parser("scrape", help="Scrape one results page and ingest it.")
    scrape.add_argument("--tribunal", type=Tribunal, choices=list(Tribunal), default=None)
    scrape.add_argument("--max-records", type=int, default=None)
    scrape.add_argument("--no-embeddings", action="store_true", help="Skip embedding generation.")

    return parser.parse_args(argv)


def _without_embeddings(config: Settings) -> Settings:
    return config.model_copy(update={"embeddings": config.embeddings.model_copy(update={"enabled": False})})


def _install_stop_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # add_signal_handler is unavailable on Windows event loops
            logger.debug(f"Cannot install handler for {sig.name}")


async def _run(args: argparse.Namespace, config: Settings) -> RunStats:
    if args.no_embeddings:
        config = _without_embeddings(config)

    items = load_items(args.file) if args.command == "ingest" else None
    pipeline = build_pipeline(config, fetch_details=not getattr(args, "no_fetch", False))
    stop_event = asyncio.Event()
    _install_stop_handlers(stop_event)
    try:
        if items is not None:
            return await pipeline.run(items, stop_event=stop_event)
        return await pipeline.scrape(
            args.tribunal or config.scraper.tribunal,
            max_records=args.max_records or config.scraper.max_records,
            stop_event=stop_event,
        )
    finally:
        await pipeline.aclose()


def check_config(config: Settings) -> int:
    for name, value in config.describe().items():
        print(f"  {name}: {value}")
    try:
        config.check_required()
    except ConfigurationError as e:
        print(f"\nConfiguration incomplete: {e}")
        return 2
    print("\nConfiguration OK.")
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    config = get_settings()
    setup_logging()

    if args.command == "check-config":
        return check_config(config)

    if args.command == "init-db":
        from .schema import init_database

        asyncio.run(init_database())
        return 0

    try:
        stats = asyncio.run(_run(args, config))
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 2

    print(json.dumps(stats.summary(), indent=2))
    return 0 if stats.errors == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
