"""SQLite-backed persistence for domains, mailboxes, invites and sessions."""
from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

from .errors import IdentityTaken, StorageError, UnknownDomain
from .models import Alias, Domain, Invite, InviteStatus, Session, User

logger = logging.getLogger("meru.database")

DomainRef = int | str

_SQLITE_INTEGER_MIN = -(2**63)
_SQLITE_INTEGER_MAX = 2**63 - 1


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the account database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "meru.sqlite3").resolve(strict=False)


def current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value)


_SCHEMA = """
CREATE TABLE IF NOT EXISTS domains (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE COLLATE NOCASE
);

CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL COLLATE NOCASE,
    domain_id INTEGER NOT NULL REFERENCES domains(id),
    password_hash TEXT NOT NULL,
    is_admin INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    UNIQUE (domain_id, name)
);

CREATE TABLE IF NOT EXISTS aliases (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    domain_id INTEGER NOT NULL REFERENCES domains(id),
    source TEXT NOT NULL COLLATE NOCASE,
    destination TEXT NOT NULL,
    UNIQUE (domain_id, source)
);

-- Every mailbox name and alias source claims a row here, so the primary key
-- rejects a second claim on the same identity from either table.
CREATE TABLE IF NOT EXISTS identities (
    domain_id INTEGER NOT NULL REFERENCES domains(id),
    local_part TEXT NOT NULL COLLATE NOCASE,
    PRIMARY KEY (domain_id, local_part)
);

CREATE TRIGGER IF NOT EXISTS users_claim_identity AFTER INSERT ON users
BEGIN
    INSERT INTO identities (domain_id, local_part) VALUES (NEW.domain_id, NEW.name);
END;

CREATE TRIGGER IF NOT EXISTS users_release_identity AFTER DELETE ON users
BEGIN
    DELETE FROM identities WHERE domain_id = OLD.domain_id AND local_part = OLD.name;
END;

CREATE TRIGGER IF NOT EXISTS aliases_claim_identity AFTER INSERT ON aliases
BEGIN
    INSERT INTO identities (domain_id, local_part) VALUES (NEW.domain_id, NEW.source);
END;

CREATE TRIGGER IF NOT EXISTS aliases_release_identity AFTER DELETE ON aliases
BEGIN
    DELETE FROM identities WHERE domain_id = OLD.domain_id AND local_part = OLD.source;
END;

CREATE TABLE IF NOT EXISTS invites (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    code TEXT NOT NULL UNIQUE,
    domain_id INTEGER NOT NULL REFERENCES domains(id),
    issuer_id INTEGER NOT NULL REFERENCES users(id),
    status TEXT NOT NULL DEFAULT 'unredeemed',
    redeemed_by INTEGER UNIQUE REFERENCES users(id),
    created_at TEXT NOT NULL,
    consumed_at TEXT
);

CREATE TABLE IF NOT EXISTS sessions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL UNIQUE REFERENCES users(id) ON DELETE CASCADE,
    token TEXT NOT NULL UNIQUE,
    created_at TEXT NOT NULL,
    ip TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_sessions_created_at ON sessions(created_at);
"""

_USER_COLUMNS = """
    u.id AS id,
    u.name AS name,
    u.domain_id AS domain_id,
    d.name AS domain_name,
    u.password_hash AS password_hash,
    u.is_admin AS is_admin,
    u.created_at AS created_at
"""


class Transaction:
    """Data access bound to one open SQLite connection.

    Instances are handed out by :meth:`Database.transaction` and
    :meth:`Database.connection`; every statement issued through one instance
    shares the same atomic unit.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    # ------------------------------------------------------------------
    # Domains
    # ------------------------------------------------------------------
    def get_domain(self, domain_id: int) -> Optional[Domain]:
        if not _SQLITE_INTEGER_MIN <= domain_id <= _SQLITE_INTEGER_MAX:
            return None
        row = self._conn.execute("SELECT * FROM domains WHERE id = ?", (domain_id,)).fetchone()
        return _row_to_domain(row) if row is not None else None

    def get_domain_by_name(self, name: str) -> Optional[Domain]:
        row = self._conn.execute(
            "SELECT * FROM domains WHERE name = ?",
            (name.strip().lower(),),
        ).fetchone()
        return _row_to_domain(row) if row is not None else None

    def find_domain(self, ref: DomainRef) -> Optional[Domain]:
        """Look a domain up by numeric id or by name."""

        if isinstance(ref, int):
            return self.get_domain(ref)
        text = str(ref).strip()
        if text.isascii() and text.isdigit():
            return self.get_domain(int(text))
        return self.get_domain_by_name(text)

    def insert_domain(self, name: str) -> Domain:
        normalized = name.strip().lower()
        if not normalized:
            raise ValueError("Domain name must not be empty")
        cursor = self._conn.execute("INSERT INTO domains (name) VALUES (?)", (normalized,))
        return Domain(id=int(cursor.lastrowid), name=normalized)

    # ------------------------------------------------------------------
    # Mailboxes and aliases
    # ------------------------------------------------------------------
    def user_exists(self, domain_id: int, name: str) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM users WHERE domain_id = ? AND name = ? LIMIT 1",
            (domain_id, name),
        ).fetchone()
        return row is not None

    def alias_exists(self, domain_id: int, source: str) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM aliases WHERE domain_id = ? AND source = ? LIMIT 1",
            (domain_id, source),
        ).fetchone()
        return row is not None

    def get_user(self, user_id: int) -> Optional[User]:
        row = self._conn.execute(
            f"SELECT {_USER_COLUMNS} FROM users u JOIN domains d ON d.id = u.domain_id WHERE u.id = ?",
            (user_id,),
        ).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_credentials(self, local_part: str, domain_name: str) -> Optional[Tuple[User, str]]:
        """Return the user and stored password hash for ``local_part@domain_name``."""

        row = self._conn.execute(
            f"""
            SELECT {_USER_COLUMNS}
              FROM users u
              JOIN domains d ON d.id = u.domain_id
             WHERE d.name = ? AND u.name = ?
             LIMIT 1
            """,
            (domain_name.strip().lower(), local_part.strip().lower()),
        ).fetchone()
        if row is None:
            return None
        return _row_to_user(row), str(row["password_hash"])

    def insert_user(
        self,
        *,
        domain_id: int,
        name: str,
        password_hash: str,
        is_admin: bool = False,
    ) -> User:
        created_at = current_timestamp()
        try:
            cursor = self._conn.execute(
                """
                INSERT INTO users (name, domain_id, password_hash, is_admin, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (name, domain_id, password_hash, int(bool(is_admin)), _serialize_datetime(created_at)),
            )
        except sqlite3.IntegrityError as exc:
            raise IdentityTaken() from exc

        user = self.get_user(int(cursor.lastrowid))
        if user is None:
            raise StorageError("Failed to load user after creation")
        return user

    def list_users(self) -> List[User]:
        rows = self._conn.execute(
            f"SELECT {_USER_COLUMNS} FROM users u JOIN domains d ON d.id = u.domain_id ORDER BY d.name, u.name"
        ).fetchall()
        return [_row_to_user(row) for row in rows]

    def set_password_hash(self, user_id: int, password_hash: str) -> bool:
        cursor = self._conn.execute(
            "UPDATE users SET password_hash = ? WHERE id = ?",
            (password_hash, user_id),
        )
        return cursor.rowcount > 0

    def insert_alias(self, *, domain_id: int, source: str, destination: str) -> Alias:
        normalized = source.strip().lower()
        try:
            cursor = self._conn.execute(
                "INSERT INTO aliases (domain_id, source, destination) VALUES (?, ?, ?)",
                (domain_id, normalized, destination.strip()),
            )
        except sqlite3.IntegrityError as exc:
            raise IdentityTaken() from exc
        return Alias(
            id=int(cursor.lastrowid),
            domain_id=domain_id,
            source=normalized,
            destination=destination.strip(),
        )

    def delete_alias(self, alias_id: int) -> bool:
        cursor = self._conn.execute("DELETE FROM aliases WHERE id = ?", (alias_id,))
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Invites
    # ------------------------------------------------------------------
    def insert_invite(self, *, code: str, domain_id: int, issuer_id: int) -> Invite:
        created_at = current_timestamp()
        cursor = self._conn.execute(
            """
            INSERT INTO invites (code, domain_id, issuer_id, status, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (code, domain_id, issuer_id, InviteStatus.UNREDEEMED.value, _serialize_datetime(created_at)),
        )
        return Invite(
            id=int(cursor.lastrowid),
            code=code,
            domain_id=domain_id,
            issuer_id=issuer_id,
            status=InviteStatus.UNREDEEMED,
            redeemed_by=None,
            created_at=created_at,
            consumed_at=None,
        )

    def get_invite_by_code(self, code: str) -> Optional[Invite]:
        row = self._conn.execute("SELECT * FROM invites WHERE code = ?", (code,)).fetchone()
        return _row_to_invite(row) if row is not None else None

    def mark_invite_redeemed(self, invite_id: int, *, user_id: int, consumed_at: datetime) -> bool:
        """Flip an unredeemed invite to redeemed; ``False`` if it was already consumed."""

        cursor = self._conn.execute(
            """
            UPDATE invites
               SET status = ?, redeemed_by = ?, consumed_at = ?
             WHERE id = ? AND status = ?
            """,
            (
                InviteStatus.REDEEMED.value,
                user_id,
                _serialize_datetime(consumed_at),
                invite_id,
                InviteStatus.UNREDEEMED.value,
            ),
        )
        return cursor.rowcount == 1

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------
    def insert_session(self, *, user_id: int, token: str, ip: str, created_at: datetime) -> Session:
        cursor = self._conn.execute(
            "INSERT INTO sessions (user_id, token, created_at, ip) VALUES (?, ?, ?, ?)",
            (user_id, token, _serialize_datetime(created_at), ip),
        )
        return Session(id=int(cursor.lastrowid), user_id=user_id, token=token, created_at=created_at, ip=ip)

    def get_session_by_token(self, token: str) -> Optional[Session]:
        row = self._conn.execute("SELECT * FROM sessions WHERE token = ?", (token,)).fetchone()
        return _row_to_session(row) if row is not None else None

    def get_session_for_user(self, user_id: int) -> Optional[Session]:
        row = self._conn.execute("SELECT * FROM sessions WHERE user_id = ?", (user_id,)).fetchone()
        return _row_to_session(row) if row is not None else None

    def delete_session(self, token: str) -> bool:
        cursor = self._conn.execute("DELETE FROM sessions WHERE token = ?", (token,))
        return cursor.rowcount > 0

    def delete_sessions_for_user(self, user_id: int) -> int:
        cursor = self._conn.execute("DELETE FROM sessions WHERE user_id = ?", (user_id,))
        return cursor.rowcount

    def delete_sessions_created_before(self, cutoff: datetime) -> int:
        cursor = self._conn.execute(
            "DELETE FROM sessions WHERE created_at < ?",
            (_serialize_datetime(cutoff),),
        )
        return cursor.rowcount


class Database:
    """Simple wrapper around SQLite for the account and session tables."""

    def __init__(self, path: Path, *, busy_timeout: float = 5.0) -> None:
        _ensure_directory(path)
        self._path = path
        self._busy_timeout = busy_timeout

    @property
    def path(self) -> Path:
        return self._path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self._path,
            timeout=self._busy_timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def initialize(self) -> None:
        """Create the required tables, constraints and triggers if missing."""

        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            raise StorageError(f"Unable to open database: {exc}") from exc
        try:
            conn.executescript(_SCHEMA)
        except sqlite3.Error as exc:
            raise StorageError(f"Unable to initialise schema: {exc}") from exc
        finally:
            conn.close()
        logger.debug("Schema ready at %s", self._path)

    @contextmanager
    def connection(self) -> Iterator[Transaction]:
        """Autocommit access for single-statement reads and writes."""

        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            raise StorageError(f"Unable to open database: {exc}") from exc
        try:
            yield Transaction(conn)
        except sqlite3.Error as exc:
            logger.error("Database statement failed: %s", exc)
            raise StorageError(str(exc)) from exc
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        """Run the enclosed statements as one serialised write transaction.

        ``BEGIN IMMEDIATE`` takes the database write lock up front, so a
        concurrent writer blocks (up to the busy timeout) instead of reading
        state that is about to change. Any exception rolls back everything.
        """

        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            raise StorageError(f"Unable to open database: {exc}") from exc
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as exc:
            conn.close()
            raise StorageError(f"Unable to start transaction: {exc}") from exc

        try:
            yield Transaction(conn)
            conn.execute("COMMIT")
        except BaseException as exc:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            if isinstance(exc, sqlite3.Error):
                logger.error("Database transaction failed: %s", exc)
                raise StorageError(str(exc)) from exc
            raise
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Administrative helpers
    # ------------------------------------------------------------------
    def create_domain(self, name: str) -> Domain:
        with self.transaction() as txn:
            return txn.insert_domain(name)

    def get_domain(self, ref: DomainRef) -> Optional[Domain]:
        with self.connection() as txn:
            return txn.find_domain(ref)

    def create_alias(self, domain: DomainRef, source: str, destination: str) -> Alias:
        with self.transaction() as txn:
            found = txn.find_domain(domain)
            if found is None:
                raise UnknownDomain()
            return txn.insert_alias(domain_id=found.id, source=source, destination=destination)

    def delete_alias(self, alias_id: int) -> bool:
        with self.transaction() as txn:
            return txn.delete_alias(alias_id)

    def list_users(self) -> List[User]:
        with self.connection() as txn:
            return txn.list_users()

    def get_invite(self, code: str) -> Optional[Invite]:
        with self.connection() as txn:
            return txn.get_invite_by_code(code)


def _row_to_domain(row: sqlite3.Row) -> Domain:
    return Domain(id=int(row["id"]), name=str(row["name"]))


def _row_to_user(row: sqlite3.Row) -> User:
    return User(
        id=int(row["id"]),
        name=str(row["name"]),
        domain_id=int(row["domain_id"]),
        domain_name=str(row["domain_name"]),
        is_admin=bool(row["is_admin"]),
        created_at=_parse_datetime(str(row["created_at"])),
    )


def _row_to_invite(row: sqlite3.Row) -> Invite:
    consumed = row["consumed_at"]
    redeemed_by = row["redeemed_by"]
    return Invite(
        id=int(row["id"]),
        code=str(row["code"]),
        domain_id=int(row["domain_id"]),
        issuer_id=int(row["issuer_id"]),
        status=InviteStatus(str(row["status"])),
        redeemed_by=int(redeemed_by) if redeemed_by is not None else None,
        created_at=_parse_datetime(str(row["created_at"])),
        consumed_at=_parse_datetime(str(consumed)) if consumed else None,
    )


def _row_to_session(row: sqlite3.Row) -> Session:
    return Session(
        id=int(row["id"]),
        user_id=int(row["user_id"]),
        token=str(row["token"]),
        created_at=_parse_datetime(str(row["created_at"])),
        ip=str(row["ip"]),
    )


__all__ = ["Database", "DomainRef", "Transaction", "current_timestamp", "resolve_database_path"]
