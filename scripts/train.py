#!/usr/bin/env python3
"""Sync all sources of a project from the command line.

Loads a project YAML file, runs every declared source through the
ingestion pipeline and prints the aggregate error list.
"""

import asyncio
import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from config import Settings
from indexer.sqlite_adapter import SQLiteAdapter
from observability.logging import setup_logging
from pipelines.adapters import SourceClients
from pipelines.errors import QuotaExceededError, SyncInProgressError
from pipelines.orchestrator import SyncOrchestrator
from pipelines.processor import HttpEmbeddingProcessor, StoreProcessor
from pipelines.state import get_training_state_message
from sources.loader import load_project_file

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Sync the sources of a project")
    parser.add_argument("project", help="Path to the project YAML file")
    parser.add_argument("--db-path", help="SQLite store path (overrides CORPUS_DB_PATH)")
    parser.add_argument("--concurrency", type=int, help="Concurrent submissions")
    parser.add_argument("--remote", action="store_true",
                        help="Submit files to the remote embedding processor")
    parser.add_argument("--log-level", default=None, help="Log level")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON logs")
    return parser


async def run(args: argparse.Namespace, settings: Settings) -> int:
    project = load_project_file(Path(args.project))
    if project is None:
        print(f"Invalid project file: {args.project}", file=sys.stderr)
        return 2

    store = SQLiteAdapter(settings.db_path)
    await store.initialize()

    if args.remote:
        processor = HttpEmbeddingProcessor(settings, store=store)
    else:
        processor = StoreProcessor(store, token_quota=settings.token_quota)
    clients = SourceClients.from_settings(settings)
    orchestrator = SyncOrchestrator(store, processor, clients, settings)

    processed = 0

    def on_file_processed():
        nonlocal processed
        processed += 1

    errors: List[str] = []
    try:
        errors = await orchestrator.train_all_sources(
            project,
            on_file_processed=on_file_processed,
            on_error=lambda message: logger.error(message)
        )
    except (QuotaExceededError, SyncInProgressError) as e:
        print(f"Sync stopped: {e}", file=sys.stderr)
        return 1
    finally:
        await clients.close()
        await processor.close()
        await store.close()

    context = orchestrator.get_context(project.id)
    print(get_training_state_message(context.state, processed))
    for error in errors:
        print(error)
    return 1 if errors else 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    settings = Settings.from_env()
    updates = {}
    if args.db_path:
        updates['db_path'] = args.db_path
    if args.concurrency:
        updates['concurrency_limit'] = args.concurrency
    if updates:
        settings = settings.model_copy(update=updates)

    setup_logging(
        level=args.log_level or settings.log_level,
        use_json=args.json_logs or settings.log_json
    )
    return asyncio.run(run(args, settings))


if __name__ == "__main__":
    sys.exit(main())
