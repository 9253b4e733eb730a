"""Command-line entry point for the User Directory service.

Subcommands:
    serve      Start the API server (bootstrap runs on startup).
    bootstrap  Reconcile roles, legacy users and the admin account, then exit.
    reindex    Rebuild the search index from the database, then exit.
"""

import argparse
import logging
import sys
from typing import List, Optional

from config import API_HOST, API_PORT
from core import dependencies
from core.database import SessionLocal
from core.exceptions import BootstrapError
from core.logging_config import setup_logging
from utils.bootstrap import BootstrapReconciler
from utils.user_manager import UserManager

logger = logging.getLogger(__name__)


def print_banner() -> None:
    """Print program banner."""
    print("=" * 70)
    print("  User Directory")
    print("  Users, departments and roles over SQL, cache and search index")
    print("=" * 70)
    print()


def run_bootstrap() -> int:
    dependencies.init_resources()
    try:
        report = BootstrapReconciler(
            SessionLocal,
            cache=dependencies.get_user_cache(),
            worker=dependencies.get_index_worker(),
        ).run()
    except BootstrapError as exc:
        logger.error("Bootstrap failed: %s", exc)
        return 1
    finally:
        # Stopping the worker waits for queued index updates
        dependencies.close_resources()

    print(f"Roles created:        {report['roles_created']}")
    print(f"Users migrated:       {report['users_migrated']}")
    print(f"Admin created:        {report['admin_created']}")
    print(f"Sample users created: {report['sample_users_created']}")
    return 0


def run_reindex() -> int:
    dependencies.init_resources()
    search_available = dependencies.get_index_worker() is not None
    db = SessionLocal()
    try:
        manager = UserManager(
            db,
            cache=dependencies.get_user_cache(),
            worker=dependencies.get_index_worker(),
            index=dependencies.get_search_index(),
        )
        count = manager.reindex_all_users()
    finally:
        db.close()
        dependencies.close_resources()

    if not search_available:
        print("Search index is disabled or unavailable; nothing reindexed.")
        return 1
    print(f"Reindexed {count} users")
    return 0


def run_server(host: str, port: int, reload: bool) -> int:
    import uvicorn

    server_url = f"http://{host}:{port}"
    print(f"Service URL: {server_url}")
    print(f"API docs:    {server_url}/docs")
    print()
    uvicorn.run("app:app", host=host, port=port, reload=reload)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="User Directory service")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Start the API server")
    serve.add_argument("--host", default=API_HOST)
    serve.add_argument("--port", type=int, default=API_PORT)
    serve.add_argument("--reload", action="store_true", help="Auto-reload on code changes")

    subparsers.add_parser("bootstrap", help="Run startup reconciliation and exit")
    subparsers.add_parser("reindex", help="Rebuild the search index and exit")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging()
    print_banner()

    if args.command == "serve":
        return run_server(args.host, args.port, args.reload)
    if args.command == "bootstrap":
        return run_bootstrap()
    return run_reindex()


if __name__ == "__main__":
    sys.exit(main())
