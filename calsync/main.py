from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from typing import Sequence

from calsync.config_manager import ConfigManager
from calsync.models import SyncResult
from calsync.oauth import OAuthError, authorize
from calsync.state_store import StateStore
from calsync.sync_engine import SyncEngine
from calsync.sync_store import SyncStore


class AppContext:
    def __init__(self, config_path: str) -> None:
        self.config_manager = ConfigManager(config_path)
        config = self.config_manager.load()
        self.sync_store = SyncStore(config.storage.sync_data_path)
        self.state_store = StateStore(config.storage.state_db_path)
        self.sync_engine = SyncEngine(self.config_manager, self.sync_store, self.state_store)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="calsync",
        description="Sync time-boxed markdown todos to Google Calendar.",
    )
    parser.add_argument(
        "--config",
        default=os.getenv("CALSYNC_CONFIG", "data/config.yaml"),
        help="Path to config.yaml (default: $CALSYNC_CONFIG or data/config.yaml)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--json", action="store_true", help="Print results as JSON")
    subparsers = parser.add_subparsers(dest="command", required=True)

    sync_parser = subparsers.add_parser("sync", help="Sync the todos of one document")
    sync_parser.add_argument("path", help="Document path, relative to the vault or absolute")

    subparsers.add_parser("sync-all", help="Sync every markdown document in the vault")
    auth_parser = subparsers.add_parser("auth", help="Authenticate with Google in the browser")
    auth_parser.add_argument("--no-browser", action="store_true", help="Print the consent URL instead of opening it")
    subparsers.add_parser("config", help="Show the configuration with secrets masked")

    history_parser = subparsers.add_parser("history", help="Show recent sync runs")
    history_parser.add_argument("--limit", type=int, default=20)
    return parser


def _print_result(result: SyncResult, as_json: bool) -> int:
    if as_json:
        print(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))
    else:
        print(result.message)
    return 1 if result.status == "error" else 0


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    context = AppContext(args.config)

    if args.command == "sync":
        try:
            result = context.sync_engine.sync_document(args.path)
        except (OSError, UnicodeDecodeError) as exc:
            print(f"Could not read {args.path}: {exc}", file=sys.stderr)
            return 1
        return _print_result(result, args.json)
    if args.command == "sync-all":
        return _print_result(context.sync_engine.sync_all(), args.json)
    if args.command == "auth":
        try:
            authorize(context.config_manager, open_browser=not args.no_browser)
        except OAuthError as exc:
            print(f"Authentication failed: {exc}", file=sys.stderr)
            return 1
        print("Google Calendar authenticated successfully.")
        return 0
    if args.command == "config":
        print(json.dumps(context.config_manager.masked(), ensure_ascii=False, indent=2))
        return 0
    if args.command == "history":
        print(json.dumps(context.state_store.recent_sync_runs(args.limit), ensure_ascii=False, indent=2))
        return 0
    return 2


if __name__ == "__main__":
    sys.exit(main())
