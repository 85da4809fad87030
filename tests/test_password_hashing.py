"""Tests for salted password hashing and legacy hash support."""

from __future__ import annotations

from passlib.hash import sha512_crypt

from meru.passwords import PasswordCodec


def test_hash_verifies_and_rejects_wrong_password(passwords: PasswordCodec) -> None:
    hashed = passwords.hash("longpassword1")

    assert passwords.verify("longpassword1", hashed)
    assert not passwords.verify("longpassword2", hashed)


def test_hashing_twice_uses_fresh_salts(passwords: PasswordCodec) -> None:
    first = passwords.hash("same-password")
    second = passwords.hash("same-password")

    assert first != second
    assert passwords.verify("same-password", first)
    assert passwords.verify("same-password", second)


def test_hash_is_opaque_bcrypt_string(passwords: PasswordCodec) -> None:
    hashed = passwords.hash("longpassword1")

    assert hashed.startswith("$2b$")
    assert "longpassword1" not in hashed


def test_malformed_stored_hash_is_rejected_without_raising(passwords: PasswordCodec) -> None:
    assert not passwords.verify("anything", "not-a-hash")
    assert not passwords.verify("anything", "$6$broken")
    assert not passwords.verify("anything", "")
    assert not passwords.verify("anything", None)
    assert not passwords.needs_rehash("not-a-hash")


def test_legacy_sha512_crypt_hash_verifies_and_needs_rehash(passwords: PasswordCodec) -> None:
    legacy = sha512_crypt.using(rounds=5000).hash("legacy-password")

    assert legacy.startswith("$6$")
    assert passwords.verify("legacy-password", legacy)
    assert not passwords.verify("other-password", legacy)
    assert passwords.needs_rehash(legacy)
    assert not passwords.needs_rehash(passwords.hash("legacy-password"))
