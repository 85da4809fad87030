"""Command-line interface for the Meru account service."""

from __future__ import annotations
import argparse
import logging
import os
import sys
from getpass import getpass
from typing import Sequence

from meru.accounts import MIN_PASSWORD_LENGTH
from meru.config import MeruConfig, load_config_from_env
from meru.errors import MeruError
from meru.service import MeruService, build_service

logger = logging.getLogger("meru.main")


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Meru account service utilities")
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", help="Initialise the account database")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP account service")
    serve_parser.add_argument("--host", default="0.0.0.0", help="Bind address for the API")
    serve_parser.add_argument("--port", type=int, default=8080, help="Port for the API (default: 8080)")
    serve_parser.add_argument(
        "--ssl-certfile",
        default=None,
        help="Path to the TLS certificate chain in PEM format",
    )
    serve_parser.add_argument(
        "--ssl-keyfile",
        default=None,
        help="Path to the TLS private key in PEM format",
    )

    domain_parser = subparsers.add_parser("add-domain", help="Register a mail domain")
    domain_parser.add_argument("name", help="Domain name, e.g. example.com")

    user_parser = subparsers.add_parser("add-user", help="Create a mailbox without an invite")
    user_parser.add_argument("name", help="Local part of the mailbox")
    user_parser.add_argument("domain", help="Domain name or id")
    user_parser.add_argument("--admin", action="store_true", help="Mark the account as administrator")

    alias_parser = subparsers.add_parser("add-alias", help="Create a forwarding alias")
    alias_parser.add_argument("domain", help="Domain name or id")
    alias_parser.add_argument("source", help="Local part that receives mail")
    alias_parser.add_argument("destination", help="Address mail is forwarded to")

    subparsers.add_parser("list-users", help="List all mailbox accounts")
    subparsers.add_parser("purge-sessions", help="Delete sessions older than the session TTL")

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "init-db", "add-domain", "add-user", "add-alias", "list-users", "purge-sessions"}

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args(args_list)
        if first not in known_commands:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args(args_list)
            args_list = ["serve", *args_list]

    return parser.parse_args(args_list)


def _initialise_service(config: MeruConfig) -> MeruService:
    service = build_service(config, database_path=os.getenv("MERU_DB_PATH"))
    logger.info("Database initialised at %s", service.database.path)
    return service


def _serve(
    *,
    service: MeruService,
    host: str,
    port: int,
    ssl_certfile: str | None,
    ssl_keyfile: str | None,
) -> None:
    from meru.api import create_app
    import uvicorn

    if bool(ssl_certfile) ^ bool(ssl_keyfile):
        raise SystemExit("Both --ssl-certfile and --ssl-keyfile must be provided together.")

    protocol = "https" if ssl_certfile and ssl_keyfile else "http"
    logger.info("Starting account API on %s://%s:%s", protocol, host, port)

    app = create_app(service=service)
    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level="info",
        ssl_certfile=ssl_certfile,
        ssl_keyfile=ssl_keyfile,
    )


def _prompt_for_password() -> str | None:
    for _ in range(3):
        password = getpass(f"Password (min {MIN_PASSWORD_LENGTH} characters): ")
        if len(password) < MIN_PASSWORD_LENGTH:
            print("Password is too short. Please try again.")
            continue
        confirmation = getpass("Confirm password: ")
        if password != confirmation:
            print("Passwords do not match. Please try again.")
            continue
        return password
    return None


def _list_users(service: MeruService) -> None:
    users = service.database.list_users()
    if not users:
        print("No users are currently registered.")
        return

    print(f"{len(users)} user(s) found:")
    print(f"{'ID':>4}  {'Email':<48}  {'Admin':<5}  Created")
    print("-" * 80)
    for user in users:
        created = user.created_at.strftime("%Y-%m-%d %H:%M:%S %Z")
        admin = "yes" if user.is_admin else "no"
        print(f"{user.id:>4}  {user.email:<48}  {admin:<5}  {created}")


def _add_user(service: MeruService, name: str, domain: str, *, is_admin: bool) -> int:
    password = _prompt_for_password()
    if password is None:
        print("Aborted creating user.")
        return 1
    try:
        user = service.accounts.create_initial_account(name, password, domain, is_admin=is_admin)
    except MeruError as exc:
        print(f"Failed to create user: {exc.message}", file=sys.stderr)
        return 1
    print(f"Created user #{user.id}: {user.email}{' (administrator)' if user.is_admin else ''}")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

    args = _parse_args(argv)
    config = load_config_from_env()
    service = _initialise_service(config)

    if args.command == "serve":
        _serve(
            service=service,
            host=args.host,
            port=args.port,
            ssl_certfile=args.ssl_certfile,
            ssl_keyfile=args.ssl_keyfile,
        )
    elif args.command == "init-db":
        print("Database initialisation complete.")
    elif args.command == "add-domain":
        try:
            domain = service.database.create_domain(args.name)
        except (MeruError, ValueError) as exc:
            print(f"Failed to create domain: {exc}", file=sys.stderr)
            return 1
        print(f"Created domain #{domain.id}: {domain.name}")
    elif args.command == "add-user":
        return _add_user(service, args.name, args.domain, is_admin=args.admin)
    elif args.command == "add-alias":
        try:
            alias = service.database.create_alias(args.domain, args.source, args.destination)
        except MeruError as exc:
            print(f"Failed to create alias: {exc.message}", file=sys.stderr)
            return 1
        print(f"Created alias #{alias.id}: {alias.source} -> {alias.destination}")
    elif args.command == "list-users":
        _list_users(service)
    elif args.command == "purge-sessions":
        removed = service.sessions.purge_expired()
        print(f"Removed {removed} expired session(s).")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
