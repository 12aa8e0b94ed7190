"""Command-line interface for the user management service."""

from __future__ import annotations
import argparse
import logging
import sys
from pathlib import Path
from typing import Sequence

try:
    import httpx
except ImportError as exc:  # pragma: no cover - exercised in environments missing deps
    raise SystemExit(
        "The 'httpx' package is required. Run `pip install -e .` to install dependencies."
    ) from exc

from usermanager.config import Settings, load_settings
from usermanager.database import Database, StoreError

logger = logging.getLogger("usermanager.main")


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="User management service utilities")
    parser.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="YAML configuration file (defaults to USER_SERVICE_CONFIG when set)",
    )
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", help="Initialise the user database")
    subparsers.add_parser("list-users", help="Print every stored user")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP service")
    serve_parser.add_argument("--host", default=None, help="Bind address (default: HOST or 0.0.0.0)")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port to listen on (default: PORT or 3000)",
    )

    status_parser = subparsers.add_parser(
        "status", help="Query the health and statistics of a running service"
    )
    status_parser.add_argument(
        "--service-url",
        default=None,
        help="Base URL of the running service (default: http://localhost:<PORT>)",
    )

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "init-db", "list-users", "status"}

    # Global options may precede the subcommand; anything else implies "serve".
    head: list[str] = []
    rest = list(args_list)
    while rest and (rest[0] == "--config" or rest[0].startswith("--config=")):
        width = 2 if rest[0] == "--config" else 1
        head.extend(rest[:width])
        rest = rest[width:]

    if not rest:
        rest = ["serve"]
    else:
        first = rest[0]
        if first in ("-h", "--help"):
            return parser.parse_args([*head, *rest])
        if first not in known_commands:
            if any(flag in rest for flag in ("-h", "--help")):
                return parser.parse_args([*head, *rest])
            rest = ["serve", *rest]

    return parser.parse_args([*head, *rest])


def _initialise_database(settings: Settings) -> Database:
    database = Database(settings.database_path)
    database.initialize()
    logger.info("Database initialised at %s", settings.database_path)
    return database


def _serve(*, settings: Settings, host: str | None, port: int | None) -> None:
    from usermanager.application import create_application
    import uvicorn

    bind_host = host or settings.host
    bind_port = port or settings.port

    app = create_application(settings=settings)
    logger.info("Server running on port %s", bind_port)
    logger.info("Environment: %s", settings.environment)
    uvicorn.run(
        app,
        host=bind_host,
        port=bind_port,
        log_level=settings.log_level.lower(),
    )


def _list_users(database: Database) -> int:
    try:
        users = database.list_users()
    except StoreError as exc:
        print(f"Failed to read users: {exc}", file=sys.stderr)
        return 1

    if not users:
        print("No users are currently registered.")
        return 0

    print(f"{len(users)} user(s) found:")
    print(f"{'ID':<24}  {'Name':<24}  {'Email':<32}  {'Role':<6}  Created")
    print("-" * 110)
    for user in users:
        created = user.created_at.strftime("%Y-%m-%d %H:%M:%S %Z")
        print(f"{user.id:<24}  {user.name:<24}  {user.email:<32}  {user.role.value:<6}  {created}")
    return 0


def _show_status(settings: Settings, service_url: str | None) -> int:
    base_url = (service_url or f"http://localhost:{settings.port}").rstrip("/")

    try:
        health = httpx.get(f"{base_url}/health", timeout=10.0)
        stats = httpx.get(f"{base_url}/api/stats", timeout=10.0)
    except httpx.HTTPError as exc:
        print(f"Failed to contact user service at {base_url}: {exc}")
        return 1

    if health.status_code != 200:
        print(f"Health check responded with {health.status_code}: {health.text.strip()}")
        return 1

    try:
        health_payload = health.json()
        stats_payload = stats.json()
    except ValueError:
        print("Service returned an unexpected response format.")
        return 1

    print(f"Service:  {base_url}")
    print(f"Status:   {health_payload.get('status', 'unknown')}")
    print(f"Database: {health_payload.get('database', 'unknown')}")

    if stats.status_code != 200:
        print(f"Statistics unavailable ({stats.status_code}): {stats_payload.get('error', '')}")
        return 1

    print(f"Users:    {stats_payload.get('totalUsers', 0)}")
    print(f"Admins:   {stats_payload.get('adminCount', 0)}")
    print(f"Active:   {stats_payload.get('activeUsers', 0)}")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    args = _parse_args(argv)
    settings = load_settings(config_path=Path(args.config_path) if args.config_path else None)

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if args.command == "serve":
        _serve(settings=settings, host=args.host, port=args.port)
    elif args.command == "init-db":
        _initialise_database(settings)
        print("Database initialisation complete.")
    elif args.command == "list-users":
        return _list_users(_initialise_database(settings))
    elif args.command == "status":
        return _show_status(settings, args.service_url)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
