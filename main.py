#!/usr/bin/env python3
"""
pg-mcp - named PostgreSQL registry and connection multiplexer.

Command line entry point for managing the database registry and running the
connection service.
"""

import argparse
import asyncio
import json
import signal
import sys
from typing import Any, Dict, List, Optional

from loguru import logger
from pydantic import ValidationError

from pgmcp.core.config.config_store import ConfigStore
from pgmcp.core.config.settings import PgMcpSettings, get_settings
from pgmcp.core.exceptions import PgMcpError
from pgmcp.core.logger import setup_structured_logging
from pgmcp.services.database_service import DatabaseService
from pgmcp.utils.masking import mask_database_url


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2))


def cmd_list(store: ConfigStore, args: argparse.Namespace) -> int:
    config = store.load()
    rows: Dict[str, Dict[str, Any]] = {
        name: {
            "url": d.url if args.show_secrets else mask_database_url(d.url),
            "ttl": d.ttl,
        }
        for name, d in sorted(config.databases.items())
    }
    _print_json({"databases": rows, "autoReload": config.auto_reload, "path": str(store.path)})
    return 0


def cmd_show(store: ConfigStore, args: argparse.Namespace) -> int:
    descriptor = store.get(args.name)
    data = descriptor.model_dump()
    if not args.show_secrets:
        data["url"] = mask_database_url(descriptor.url)
    _print_json({args.name: data})
    return 0


def cmd_add(store: ConfigStore, args: argparse.Namespace) -> int:
    entry: Dict[str, Any] = {"url": args.url}
    if args.ttl is not None:
        entry["ttl"] = args.ttl
    store.add(args.name, entry)
    print(f"Added database '{args.name}'")
    return 0


def cmd_update(store: ConfigStore, args: argparse.Namespace) -> int:
    changes: Dict[str, Any] = {}
    if args.url is not None:
        changes["url"] = args.url
    if args.ttl is not None:
        changes["ttl"] = args.ttl
    if not changes:
        print("Nothing to update: pass --url and/or --ttl", file=sys.stderr)
        return 1
    store.update(args.name, changes)
    print(f"Updated database '{args.name}'")
    return 0


def cmd_remove(store: ConfigStore, args: argparse.Namespace) -> int:
    store.remove(args.name)
    print(f"Removed database '{args.name}'")
    return 0


async def _check(settings: PgMcpSettings, name: Optional[str]) -> int:
    service = DatabaseService.from_settings(settings)
    try:
        resolved, client = await service.get_client(name)
        version = await client.fetchval("SHOW server_version")
        print(f"{resolved}: OK (PostgreSQL {version})")
        return 0
    finally:
        await service.pool.close_all()


async def _serve(settings: PgMcpSettings) -> int:
    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown_event.set)
        except NotImplementedError:
            # Windows: rely on KeyboardInterrupt
            pass

    async with DatabaseService.from_settings(settings) as service:
        logger.info("Service running; press Ctrl+C to stop")
        await shutdown_event.wait()
        logger.info("Shutdown requested")
        logger.debug(f"Final stats: {service.get_stats()}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pg-mcp-config", description="Manage named PostgreSQL connections"
    )
    parser.add_argument("--config", help="Config file path (overrides PG_MCP_CONFIG_PATH)")
    parser.add_argument("--log-level", help="Log level (DEBUG, INFO, WARNING, ERROR)")
    sub = parser.add_subparsers(dest="command", required=True)

    p_list = sub.add_parser("list", help="List configured databases")
    p_list.add_argument("--show-secrets", action="store_true", help="Print unmasked URLs")

    p_show = sub.add_parser("show", help="Show one database")
    p_show.add_argument("name")
    p_show.add_argument("--show-secrets", action="store_true", help="Print unmasked URL")

    p_add = sub.add_parser("add", help="Add a database")
    p_add.add_argument("name")
    p_add.add_argument("url")
    p_add.add_argument("--ttl", type=int, help="Idle TTL in milliseconds")

    p_update = sub.add_parser("update", help="Update a database")
    p_update.add_argument("name")
    p_update.add_argument("--url")
    p_update.add_argument("--ttl", type=int, help="Idle TTL in milliseconds")

    p_remove = sub.add_parser("remove", help="Remove a database")
    p_remove.add_argument("name")

    p_check = sub.add_parser("check", help="Open and probe a connection")
    p_check.add_argument("name", nargs="?")

    sub.add_parser("serve", help="Run the connection service until interrupted")
    return parser


COMMANDS = {
    "list": cmd_list,
    "show": cmd_show,
    "add": cmd_add,
    "update": cmd_update,
    "remove": cmd_remove,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    overrides: Dict[str, Any] = {}
    if args.config:
        overrides["pg_mcp_config_path"] = args.config
    if args.log_level:
        overrides["log_level"] = args.log_level
    try:
        # Command line values go through the same validators as the environment
        settings = PgMcpSettings(**overrides) if overrides else get_settings()
    except ValidationError as e:
        for issue in e.errors(include_url=False):
            print(f"Error: {issue['msg']}", file=sys.stderr)
        return 2
    setup_structured_logging(
        level=settings.log_level.upper(),
        json_format=settings.log_format == "json",
        log_file=settings.log_file,
    )

    try:
        if args.command == "check":
            return asyncio.run(_check(settings, args.name))
        if args.command == "serve":
            return asyncio.run(_serve(settings))
        return COMMANDS[args.command](ConfigStore.from_settings(settings), args)
    except PgMcpError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
