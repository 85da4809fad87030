"""Database-backed login sessions for mailbox accounts."""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta
from typing import Callable, Optional

from .database import Database, current_timestamp
from .errors import InvalidCredentials
from .identity import split_email
from .passwords import PasswordCodec

logger = logging.getLogger("meru.sessions")

DEFAULT_SESSION_TTL = timedelta(hours=2)
SESSION_TOKEN_BYTES = 32


class SessionManager:
    """Issue, validate, and revoke login sessions.

    A user holds at most one session. Expiry is evaluated lazily: a stale or
    IP-mismatched record is treated as anonymous by :meth:`validate` and is
    only removed by the next login, a logout, or :meth:`purge_expired`.
    """

    def __init__(
        self,
        database: Database,
        passwords: PasswordCodec,
        *,
        ttl: timedelta = DEFAULT_SESSION_TTL,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._database = database
        self._passwords = passwords
        self._ttl = ttl
        self._clock = clock or current_timestamp

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    @property
    def cookie_max_age(self) -> int:
        return int(self._ttl.total_seconds())

    def login(self, email: str, password: str, client_ip: str) -> str:
        parts = split_email(email)
        if parts is None:
            raise InvalidCredentials()
        local_part, domain_name = parts

        with self._database.connection() as txn:
            found = txn.find_credentials(local_part, domain_name)
        if found is None:
            # Equalise timing with the wrong-password path.
            self._passwords.hash(password)
            logger.warning("Failed login attempt for %s", email)
            raise InvalidCredentials()
        user, stored_hash = found
        if not self._passwords.verify(password, stored_hash):
            logger.warning("Failed login attempt for %s", email)
            raise InvalidCredentials()

        upgraded_hash = None
        if self._passwords.needs_rehash(stored_hash):
            upgraded_hash = self._passwords.hash(password)

        token = secrets.token_urlsafe(SESSION_TOKEN_BYTES)
        with self._database.transaction() as txn:
            # The password may have changed since it was verified above.
            current = txn.find_credentials(local_part, domain_name)
            if current is None or current[1] != stored_hash:
                raise InvalidCredentials()
            if upgraded_hash is not None:
                txn.set_password_hash(user.id, upgraded_hash)
                logger.info("Upgraded password hash for user %s", user.id)
            txn.delete_sessions_for_user(user.id)
            txn.insert_session(user_id=user.id, token=token, ip=client_ip, created_at=self._clock())

        logger.info("User %s signed in from %s", user.id, client_ip)
        return token

    def validate(self, token: str, client_ip: str) -> Optional[int]:
        """Return the owning user id, or ``None`` for an anonymous caller."""

        if not token:
            return None
        with self._database.connection() as txn:
            session = txn.get_session_by_token(token)
        if session is None:
            return None
        if self._clock() - session.created_at > self._ttl:
            return None
        if session.ip != client_ip:
            return None
        return session.user_id

    def logout(self, token: str) -> None:
        if not token:
            return
        with self._database.transaction() as txn:
            if txn.delete_session(token):
                logger.info("Session closed")

    def purge_expired(self) -> int:
        cutoff = self._clock() - self._ttl
        with self._database.transaction() as txn:
            removed = txn.delete_sessions_created_before(cutoff)
        if removed:
            logger.info("Purged %s expired session(s)", removed)
        return removed


__all__ = ["DEFAULT_SESSION_TTL", "SESSION_TOKEN_BYTES", "SessionManager"]
