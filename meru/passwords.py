"""Salted password hashing for mailbox accounts."""

from __future__ import annotations

from passlib.context import CryptContext

DEFAULT_BCRYPT_ROUNDS = 12


class PasswordCodec:
    """Hash and verify passwords with bcrypt.

    Hashes produced by the legacy SHA-512 crypt scheme (``$6$...``) are still
    accepted by :meth:`verify` and reported by :meth:`needs_rehash` so that
    callers can upgrade them after a successful login.
    """

    def __init__(self, *, rounds: int = DEFAULT_BCRYPT_ROUNDS) -> None:
        self._context = CryptContext(
            schemes=["bcrypt", "sha512_crypt"],
            deprecated=["sha512_crypt"],
            bcrypt__rounds=rounds,
        )

    def hash(self, plaintext: str) -> str:
        return self._context.hash(plaintext)

    def verify(self, plaintext: str, hashed: str | None) -> bool:
        if not hashed:
            return False
        try:
            return self._context.verify(plaintext, hashed)
        except (ValueError, TypeError):
            return False

    def needs_rehash(self, hashed: str) -> bool:
        try:
            return self._context.needs_update(hashed)
        except (ValueError, TypeError):
            return False


__all__ = ["DEFAULT_BCRYPT_ROUNDS", "PasswordCodec"]
