"""CLI entry point for Speak-EZ sync."""

import argparse
import asyncio
import json
import logging
import sys
import traceback
from datetime import datetime
from pathlib import Path

from .config import Config, load_config
from .session import RemoteSessionGate
from .store import LocalStore
from .sync import RemoteClient, SyncClient, SyncStatus
from .timestamps import utc_now


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = "".join(traceback.format_exception(*record.exc_info))

        try:
            return json.dumps(log_data)
        except (TypeError, ValueError):
            log_data["message"] = str(log_data["message"])
            return json.dumps(log_data)


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure logging.

    Args:
        verbose: Enable debug logging (ignored if log_level is set).
        log_level: Explicit log level (warning, info, debug).
        json_output: Output logs as JSON lines for machine parsing.
    """
    if log_level:
        level_map = {
            "warning": logging.WARNING,
            "info": logging.INFO,
            "debug": logging.DEBUG,
        }
        level = level_map.get(log_level, logging.INFO)
    else:
        level = logging.DEBUG if verbose else logging.INFO

    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    logging.basicConfig(level=level, handlers=[handler])


def open_store(config: Config) -> LocalStore:
    store = LocalStore(config.store.db_path)
    store.connect()
    return store


async def build_sync_client(config: Config, store: LocalStore) -> SyncClient | None:
    """Create a sync client with a freshly checked session.

    Returns:
        The client, or None if sync is disabled or no server is configured.
    """
    if not config.sync.enabled or not config.sync.server_url:
        return None

    gate = RemoteSessionGate(
        config.sync.server_url,
        config.sync.session_token,
        api_prefix=config.sync.api_prefix,
        timeout=config.sync.timeout_seconds,
    )
    await gate.refresh()

    remote = RemoteClient(
        config.sync.server_url,
        session_token=config.sync.session_token,
        api_prefix=config.sync.api_prefix,
        max_retries=config.sync.max_retries,
        timeout=config.sync.timeout_seconds,
    )
    return SyncClient(
        store,
        remote,
        gate,
        debounce_seconds=config.sync.debounce_seconds,
        incremental_pull=config.sync.incremental_pull,
    )


async def cmd_status(args: argparse.Namespace) -> int:
    """Show local state and sync status."""
    config = load_config(args.config)
    store = open_store(config)

    try:
        status_data = {
            "timestamp": datetime.now().isoformat(),
            "device": config.device.name,
            "store": {"db_path": config.store.db_path, **store.get_stats()},
            "sync": {
                "enabled": config.sync.enabled,
                "server_url": config.sync.server_url or None,
            },
        }

        client = await build_sync_client(config, store)
        if client:
            status_data["sync"].update(client.get_sync_status())
            await client.close()
    finally:
        store.close()

    if args.json:
        print(json.dumps(status_data, indent=2))
        return 0

    print("Speak-EZ Sync Status")
    print("====================")
    print(f"Device: {status_data['device']}")
    print()
    store_status = status_data["store"]
    print(f"Local store ({store_status['db_path']}):")
    print(f"  Sessions: {store_status['history_count']}")
    print(f"  Custom workouts: {store_status['custom_workouts_count']}")
    print(f"  Personal records: {store_status['personal_records_count']} exercises")
    print(f"  Updated: {store_status['updated_at'] or 'never'}")
    print(f"  Last synced: {store_status['cursor'] or 'never'}")
    print()
    sync_status = status_data["sync"]
    if not sync_status["enabled"]:
        print("Sync: disabled")
    elif not sync_status["server_url"]:
        print("Sync: no server configured")
    else:
        print(f"Sync ({sync_status['server_url']}):")
        authenticated = "Yes" if sync_status.get("authenticated") else "No"
        print(f"  Authenticated: {authenticated}")

    return 0


def cmd_show(args: argparse.Namespace) -> int:
    """Print the local snapshot as JSON."""
    config = load_config(args.config)
    store = open_store(config)
    try:
        print(json.dumps(store.load().to_dict(), indent=2))
    finally:
        store.close()
    return 0


async def _run_sync(args: argparse.Namespace, operation: str) -> int:
    config = load_config(args.config)
    store = open_store(config)

    try:
        client = await build_sync_client(config, store)
        if client is None:
            print("Sync is disabled or no server is configured", file=sys.stderr)
            return 1

        try:
            if operation == "push":
                result = await client.push()
            else:
                result = await client.pull_and_merge()
        finally:
            await client.close()
    finally:
        store.close()

    if result.status == SyncStatus.SUCCESS:
        if operation == "push":
            print(f"Pushed {result.sessions_pushed} sessions")
        else:
            print(f"Pulled {result.sessions_pulled} new sessions")
        return 0

    message = f"{operation.capitalize()} {result.status.value}"
    if result.error:
        message += f": {result.error}"
    print(message, file=sys.stderr)
    return 1


async def cmd_push(args: argparse.Namespace) -> int:
    """Push the local snapshot to the server."""
    return await _run_sync(args, "push")


async def cmd_pull(args: argparse.Namespace) -> int:
    """Pull server state and merge it into local state."""
    return await _run_sync(args, "pull")


async def cmd_add_session(args: argparse.Namespace) -> int:
    """Record a completed session and push it."""
    config = load_config(args.config)
    store = open_store(config)

    try:
        client = await build_sync_client(config, store)
        session = store.add_session(
            {
                "workoutId": args.workout_id,
                "workoutName": args.name or args.workout_id,
                "exercises": [],
                "totalDuration": args.duration,
                "completedAt": utc_now(),
            }
        )
        print(f"Recorded session {session['id']}")

        if client:
            try:
                await client.flush()
            finally:
                await client.close()
    finally:
        store.close()

    return 0


def cmd_reset(args: argparse.Namespace) -> int:
    """Wipe all local state."""
    if not args.yes:
        print("This deletes all local progress. Re-run with --yes to confirm.")
        return 1

    config = load_config(args.config)
    store = open_store(config)
    try:
        store.clear()
    finally:
        store.close()
    print("Local state cleared")
    return 0


async def cmd_serve(args: argparse.Namespace) -> int:
    """Run the reference sync server."""
    config = load_config(args.config)

    try:
        from .server import create_app

        import uvicorn
    except ImportError as e:
        print(f"Server dependencies not installed: {e}", file=sys.stderr)
        print("Install with: pip install speakez-sync[server]", file=sys.stderr)
        return 1

    host = args.host or config.server.host
    port = args.port or config.server.port
    print(f"Starting Speak-EZ sync server on http://{host}:{port}")
    if not config.server.sessions:
        print("Warning: no sessions configured, every request will get 401")

    server = uvicorn.Server(
        uvicorn.Config(
            create_app(config),
            host=host,
            port=port,
            log_level="info" if args.verbose else "warning",
        )
    )
    await server.serve()
    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="speakez",
        description="Offline-first sync for Speak-EZ practice data",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file (default: built-in defaults)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["warning", "info", "debug"],
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    status_parser = subparsers.add_parser("status", help="Show local and sync status")
    status_parser.add_argument("--json", action="store_true", help="Output status as JSON")
    status_parser.set_defaults(func=cmd_status)

    show_parser = subparsers.add_parser("show", help="Print the local snapshot")
    show_parser.set_defaults(func=cmd_show)

    push_parser = subparsers.add_parser("push", help="Push local state to the server")
    push_parser.set_defaults(func=cmd_push)

    pull_parser = subparsers.add_parser("pull", help="Pull and merge server state")
    pull_parser.set_defaults(func=cmd_pull)

    add_parser = subparsers.add_parser("add-session", help="Record a completed session")
    add_parser.add_argument("workout_id", help="Id of the workout that was completed")
    add_parser.add_argument("--name", default=None, help="Workout name")
    add_parser.add_argument(
        "--duration", type=int, default=0, help="Total duration in seconds"
    )
    add_parser.set_defaults(func=cmd_add_session)

    reset_parser = subparsers.add_parser("reset", help="Delete all local state")
    reset_parser.add_argument("--yes", action="store_true", help="Confirm the reset")
    reset_parser.set_defaults(func=cmd_reset)

    serve_parser = subparsers.add_parser("serve", help="Run the reference sync server")
    serve_parser.add_argument("--host", type=str, default=None, help="Host to bind to")
    serve_parser.add_argument("-p", "--port", type=int, default=None, help="Port to bind to")
    serve_parser.set_defaults(func=cmd_serve)

    args = parser.parse_args()

    setup_logging(args.verbose, args.log_level, args.json_logs)

    if not args.command:
        parser.print_help()
        return 1

    func = args.func
    if asyncio.iscoroutinefunction(func):
        return asyncio.run(func(args))
    return func(args)


if __name__ == "__main__":
    sys.exit(main())
