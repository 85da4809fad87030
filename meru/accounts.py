"""Invite-gated mailbox provisioning."""

from __future__ import annotations

import logging

from .database import Database, DomainRef
from .errors import IdentityTaken, InvalidCredentials, InvalidInvite, UnknownDomain, WeakPassword
from .identity import UniquenessChecker, split_email, validate_local_part
from .invites import InviteRegistry
from .models import Domain, User
from .passwords import PasswordCodec

logger = logging.getLogger("meru.accounts")

MIN_PASSWORD_LENGTH = 8


def validate_password(password: str) -> None:
    if password is None or len(password) < MIN_PASSWORD_LENGTH:
        raise WeakPassword()


class AccountProvisioner:
    """Create mailbox accounts and manage their passwords.

    Every account created through :meth:`create_account` consumes exactly
    one invite. The identity check, user insert and invite redemption share a
    single transaction; if any of them fails nothing is persisted.
    """

    def __init__(
        self,
        database: Database,
        passwords: PasswordCodec,
        invites: InviteRegistry,
        uniqueness: UniquenessChecker | None = None,
    ) -> None:
        self._database = database
        self._passwords = passwords
        self._invites = invites
        self._uniqueness = uniqueness or UniquenessChecker()

    def create_account(self, name: str, password: str, invite_code: str, domain: DomainRef) -> User:
        local_part = validate_local_part(name)
        validate_password(password)
        found_domain = self._require_domain(domain)

        password_hash = self._passwords.hash(password)
        with self._database.transaction() as txn:
            # Invite before identity: a replayed signup reports InvalidInvite.
            invite = self._invites.find_redeemable(txn, invite_code, found_domain.id)
            if invite is None:
                raise InvalidInvite()
            if self._uniqueness.is_identity_taken(txn, found_domain.id, local_part):
                raise IdentityTaken()
            user = txn.insert_user(
                domain_id=found_domain.id,
                name=local_part,
                password_hash=password_hash,
            )
            self._invites.redeem(txn, invite, user.id)

        logger.info("Created account %s via invite %s", user.email, invite.id)
        return user

    def create_initial_account(
        self,
        name: str,
        password: str,
        domain: DomainRef,
        *,
        is_admin: bool = True,
    ) -> User:
        """Create an account without an invite, for first-time setup."""

        local_part = validate_local_part(name)
        validate_password(password)
        found_domain = self._require_domain(domain)

        password_hash = self._passwords.hash(password)
        with self._database.transaction() as txn:
            if self._uniqueness.is_identity_taken(txn, found_domain.id, local_part):
                raise IdentityTaken()
            user = txn.insert_user(
                domain_id=found_domain.id,
                name=local_part,
                password_hash=password_hash,
                is_admin=is_admin,
            )

        logger.info("Created %saccount %s without invite", "administrator " if is_admin else "", user.email)
        return user

    def change_password(self, email: str, old_password: str, new_password: str) -> None:
        """Replace the password for ``email`` and revoke its live session."""

        validate_password(new_password)
        parts = split_email(email)
        if parts is None:
            raise InvalidCredentials()

        with self._database.connection() as txn:
            found = txn.find_credentials(*parts)
        if found is None or not self._passwords.verify(old_password, found[1]):
            logger.warning("Rejected password change for %s", email)
            raise InvalidCredentials()
        user, stored_hash = found

        new_hash = self._passwords.hash(new_password)
        with self._database.transaction() as txn:
            current = txn.find_credentials(*parts)
            if current is None or current[1] != stored_hash:
                raise InvalidCredentials()
            txn.set_password_hash(user.id, new_hash)
            txn.delete_sessions_for_user(user.id)

        logger.info("Password changed for user %s", user.id)

    def _require_domain(self, domain: DomainRef) -> Domain:
        found = self._database.get_domain(domain)
        if found is None:
            raise UnknownDomain()
        return found


__all__ = ["AccountProvisioner", "MIN_PASSWORD_LENGTH", "validate_password"]
