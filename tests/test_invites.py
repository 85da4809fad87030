from __future__ import annotations

import re

import pytest

from meru.database import Database
from meru.errors import InvalidInvite, StorageError, UnknownDomain
from meru.invites import InviteRegistry
from meru.models import Domain, InviteStatus, User


def test_create_invite_generates_160_bit_hex_code(invites: InviteRegistry, admin: User, domain: Domain) -> None:
    invite = invites.create_invite(admin.id, domain.id)

    assert re.fullmatch(r"[0-9a-f]{40}", invite.code)
    assert invite.status is InviteStatus.UNREDEEMED
    assert invite.issuer_id == admin.id
    assert invite.redeemed_by is None
    assert invite.consumed_at is None


def test_codes_are_unique(invites: InviteRegistry, admin: User, domain: Domain) -> None:
    codes = {invites.create_invite(admin.id, domain.id).code for _ in range(5)}
    assert len(codes) == 5


def test_create_invite_for_unknown_domain(invites: InviteRegistry, admin: User) -> None:
    with pytest.raises(UnknownDomain):
        invites.create_invite(admin.id, 9999)


def test_colliding_code_factory_gives_up(database: Database, admin: User, domain: Domain) -> None:
    registry = InviteRegistry(database, code_factory=lambda: "deadbeef")
    registry.create_invite(admin.id, domain.id)

    with pytest.raises(StorageError):
        registry.create_invite(admin.id, domain.id)


def test_find_redeemable_requires_matching_domain(
    database: Database, invites: InviteRegistry, admin: User, domain: Domain
) -> None:
    other = database.create_domain("example.org")
    invite = invites.create_invite(admin.id, domain.id)

    with database.connection() as txn:
        assert invites.find_redeemable(txn, invite.code, domain.id) == invite
        assert invites.find_redeemable(txn, invite.code, other.id) is None
        assert invites.find_redeemable(txn, "unknown", domain.id) is None
        assert invites.find_redeemable(txn, "", domain.id) is None


def test_redeem_twice_raises_invalid_invite(
    database: Database, invites: InviteRegistry, admin: User, domain: Domain
) -> None:
    invite = invites.create_invite(admin.id, domain.id)

    with database.transaction() as txn:
        invites.redeem(txn, invite, admin.id)

    with database.connection() as txn:
        assert invites.find_redeemable(txn, invite.code, domain.id) is None

    with pytest.raises(InvalidInvite):
        with database.transaction() as txn:
            invites.redeem(txn, invite, admin.id)
