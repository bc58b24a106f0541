"""
TaskTrack CLI — Operator commands over the task core.

Commands:
- tasktrack init   — Create DB tables, blob root and log directories
- tasktrack list   — Print one page of the tasks visible to an identity
- tasktrack stats  — Print the status / priority summary for an identity as JSON

The identity is passed explicitly (``--user-id`` / ``--username``); the CLI
does no authentication of its own.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Tuple

if TYPE_CHECKING:
    from tasktrack.db.session import Database
    from tasktrack.engine.config import TaskTrackConfig

logger = logging.getLogger("tasktrack.cli")


def main(argv: Optional[list] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="tasktrack",
        description="TaskTrack — access-controlled task tracking",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # tasktrack init
    init_parser = subparsers.add_parser("init", help="Create tables and storage directories")
    init_parser.add_argument("--config", help="Path to tasktrack.yaml (default: auto-discover)")

    # tasktrack list
    list_parser = subparsers.add_parser("list", help="List tasks visible to an identity")
    _add_identity_args(list_parser)
    list_parser.add_argument("--status", help="todo | in-progress | completed")
    list_parser.add_argument("--priority", help="low | medium | high")
    list_parser.add_argument("--search", help="Case-insensitive text in title or description")
    list_parser.add_argument("--page", type=int, default=1, help="Page number (default: 1)")
    list_parser.add_argument("--limit", type=int, help="Page size (default: query.default_limit)")
    list_parser.add_argument("--sort", help="Sort field, ascending (default: newest first)")

    # tasktrack stats
    stats_parser = subparsers.add_parser("stats", help="Task summary for an identity")
    _add_identity_args(stats_parser)

    args = parser.parse_args(argv)

    if args.command == "init":
        return cmd_init(args)
    elif args.command == "list":
        return cmd_list(args)
    elif args.command == "stats":
        return cmd_stats(args)
    else:
        parser.print_help()
        return 0


def _add_identity_args(sub: argparse.ArgumentParser) -> None:
    sub.add_argument("--config", help="Path to tasktrack.yaml (default: auto-discover)")
    sub.add_argument("--user-id", required=True, help="Identity id")
    sub.add_argument("--username", required=True, help="Identity username")


def _bootstrap(config_path: Optional[str]) -> Tuple[TaskTrackConfig, Database]:
    """Load config, start structured logging and open the database."""
    from tasktrack.db.session import init_database
    from tasktrack.engine.config import load_config
    from tasktrack.engine.logging import init_logging

    config = load_config(config_path)
    if config.logging.structured:
        init_logging(config.logging.directory, config.logging.level)
    else:
        logging.getLogger("tasktrack").setLevel(config.logging.level)
    return config, init_database(config)


def cmd_init(args: argparse.Namespace) -> int:
    """
    Prepare a TaskTrack installation:
    1. Load config (tasktrack.yaml or defaults)
    2. Create all tables
    3. Create the blob root and log directories
    """
    from pydantic import ValidationError as ConfigError

    from tasktrack.db.session import close_database
    from tasktrack.engine.logging import get_file_logger, log, log_system_event

    print("=" * 60)
    print("  TaskTrack Initialization")
    print("=" * 60)

    try:
        config, db = _bootstrap(args.config)
    except (OSError, ConfigError) as e:
        print(f"[ERROR] Failed to load config: {e}")
        return 1

    try:
        db.create_tables()
        if not db.health_check():
            print(f"[ERROR] Database not reachable: {db!r}")
            return 1
        print(f"[OK] Database tables ready ({config.database.url})")

        Path(config.storage.blob_root).mkdir(parents=True, exist_ok=True)
        print(f"[OK] Blob root: {config.storage.blob_root}")
        file_logger = get_file_logger()
        if file_logger is not None:
            print(f"[OK] Logs: {file_logger.log_dir}")
        else:
            print("[OK] Structured logs disabled")

        log(log_system_event("initialized", details={"environment": config.environment}))
        print()
        print("  TaskTrack initialized successfully!")
        print("=" * 60)
        return 0
    finally:
        close_database()


def cmd_list(args: argparse.Namespace) -> int:
    """Print one page of tasks as a table."""
    from pydantic import ValidationError as ConfigError

    from tasktrack.db.session import close_database
    from tasktrack.engine.context import Identity
    from tasktrack.engine.errors import TaskTrackError
    from tasktrack.services.tasks import TaskService
    from tasktrack.storage.blobs import FileBlobStore

    try:
        config, db = _bootstrap(args.config)
    except (OSError, ConfigError) as e:
        print(f"[ERROR] Failed to load config: {e}")
        return 1

    try:
        identity = Identity(id=args.user_id, username=args.username)
        service = TaskService(db, FileBlobStore(config.storage.blob_root), config=config)
        query = {
            "status": args.status,
            "priority": args.priority,
            "search": args.search,
            "page": args.page,
            "limit": args.limit,
            "sort": args.sort,
        }
        page = service.list(identity, {k: v for k, v in query.items() if v is not None})
    except TaskTrackError as e:
        print(f"[ERROR] {e.message}")
        return 1
    finally:
        close_database()

    print(f"{'ID':<34} {'STATUS':<12} {'PRIORITY':<9} {'DUE':<11} TITLE")
    for task in page.items:
        due = task.due_date.isoformat() if task.due_date else "-"
        print(f"{task.id:<34} {task.status.value:<12} {task.priority.value:<9} {due:<11} {task.title}")
    print(f"\nPage {page.page}/{page.total_pages} — {page.total_count} task(s)")
    return 0


def cmd_stats(args: argparse.Namespace) -> int:
    """Print the task summary as JSON."""
    from pydantic import ValidationError as ConfigError

    from tasktrack.db.session import close_database
    from tasktrack.engine.context import Identity
    from tasktrack.engine.errors import TaskTrackError
    from tasktrack.services.stats import StatsService

    try:
        _, db = _bootstrap(args.config)
    except (OSError, ConfigError) as e:
        print(f"[ERROR] Failed to load config: {e}")
        return 1

    try:
        identity = Identity(id=args.user_id, username=args.username)
        stats = StatsService(db).summary(identity)
    except TaskTrackError as e:
        print(f"[ERROR] {e.message}")
        return 1
    finally:
        close_database()

    print(json.dumps(stats.model_dump(), indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
