"""
Command-line entry point for the ingestion pipeline.

Run with: python -m servers.event_ingest --config sources.json --dry-run
"""

import argparse
import asyncio
import json
import sys
from typing import Optional

import structlog

from .config import PipelineConfig, get_default_config, load_config
from .errors import ConfigError, StorageError
from .log import configure_logging
from .orchestrator import IngestionOrchestrator
from .sources import ADAPTERS
from .storage import InMemoryEventStore, MongoEventStore

logger = structlog.get_logger()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Scrape event sources into the event catalogue")
    parser.add_argument("--config", help="Path to a JSON pipeline config (defaults when omitted)")
    parser.add_argument(
        "--sources",
        help=f"Comma-separated sources to run instead of the enabled ones ({', '.join(ADAPTERS)})",
    )
    parser.add_argument("--dry-run", action="store_true", help="Use an in-memory store")
    parser.add_argument("--mongo-uri", help="MongoDB connection string")
    parser.add_argument("--mongo-db", default="events", help="MongoDB database name")
    parser.add_argument("--log-level", default="INFO", help="Log level")
    parser.add_argument("--json-logs", action="store_true", help="Emit logs as JSON lines")
    return parser


async def run(args: argparse.Namespace) -> int:
    config: PipelineConfig = load_config(args.config) if args.config else load_config(get_default_config())
    sources = args.sources.split(",") if args.sources else config.enabled_sources()
    sources = [s.strip() for s in sources if s.strip()]

    if args.dry_run:
        store = InMemoryEventStore()
    elif args.mongo_uri:
        store = MongoEventStore.from_uri(args.mongo_uri, database=args.mongo_db)
        await store.ensure_indexes()
    else:
        raise ConfigError("Pass --mongo-uri or --dry-run")

    orchestrator = IngestionOrchestrator(
        store,
        concurrency=config.run.concurrency,
        run_timeout=config.run.timeout_s,
        threshold=config.deduplication.threshold,
        weights=config.deduplication.weights,
    )
    stats = await orchestrator.run(
        sources,
        {name: config.scrape_options(name) for name in sources},
    )

    print(json.dumps(stats.model_dump(mode="json"), indent=2))
    return 0 if stats.succeeded else 1


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level, args.json_logs)
    try:
        return asyncio.run(run(args))
    except (ConfigError, StorageError) as e:
        logger.error("run_aborted", error_type=type(e).__name__, error=str(e))
        return 2


if __name__ == "__main__":
    sys.exit(main())
