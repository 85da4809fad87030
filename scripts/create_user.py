import argparse
import getpass
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from meru.accounts import MIN_PASSWORD_LENGTH
from meru.config import load_config_from_env
from meru.errors import MeruError
from meru.service import build_service


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create the first Meru administrator mailbox")
    parser.add_argument("email", help="Full address of the mailbox, e.g. admin@example.com")
    parser.add_argument(
        "--db",
        dest="db_path",
        default=None,
        help="Path to the SQLite database (defaults to MERU_DB_PATH or data/meru.sqlite3)",
    )
    parser.add_argument(
        "--no-admin",
        dest="is_admin",
        action="store_false",
        help="Create a regular mailbox instead of an administrator",
    )
    return parser.parse_args()


def prompt_for_password() -> str:
    for _ in range(3):
        password = getpass.getpass("Password: ")
        confirm = getpass.getpass("Confirm password: ")
        if password != confirm:
            print("Passwords do not match. Try again.", file=sys.stderr)
            continue
        if len(password) < MIN_PASSWORD_LENGTH:
            print(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long.", file=sys.stderr)
            continue
        return password
    raise SystemExit("Failed to set password after three attempts.")


def main() -> int:
    args = parse_args()
    local_part, _, domain_name = args.email.strip().lower().partition("@")
    if not local_part or not domain_name:
        print("Error: expected a full email address", file=sys.stderr)
        return 1

    password = prompt_for_password()
    service = build_service(load_config_from_env(), database_path=args.db_path or os.getenv("MERU_DB_PATH"))

    try:
        domain = service.database.get_domain(domain_name)
        if domain is None:
            domain = service.database.create_domain(domain_name)
            print(f"Created domain #{domain.id}: {domain.name}")
        user = service.accounts.create_initial_account(local_part, password, domain.id, is_admin=args.is_admin)
    except MeruError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        return 1

    print(f"Created user #{user.id}: {user.email}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
