"""Single-use signup invites."""

from __future__ import annotations

import logging
import secrets
from datetime import datetime
from typing import Callable, Optional

from .database import Database, Transaction, current_timestamp
from .errors import InvalidInvite, StorageError, UnknownDomain
from .models import Invite

logger = logging.getLogger("meru.invites")

INVITE_CODE_BYTES = 20
_CODE_ATTEMPTS = 3


def generate_invite_code() -> str:
    """Return 160 bits of randomness as lowercase hex."""

    return secrets.token_hex(INVITE_CODE_BYTES)


class InviteRegistry:
    """Create, look up and redeem invite codes."""

    def __init__(
        self,
        database: Database,
        *,
        code_factory: Callable[[], str] = generate_invite_code,
        clock: Callable[[], datetime] = current_timestamp,
    ) -> None:
        self._database = database
        self._code_factory = code_factory
        self._clock = clock

    def create_invite(self, issuer_user_id: int, domain_id: int) -> Invite:
        for _ in range(_CODE_ATTEMPTS):
            code = self._code_factory()
            with self._database.transaction() as txn:
                if txn.get_domain(domain_id) is None:
                    raise UnknownDomain()
                if txn.get_invite_by_code(code) is not None:
                    continue
                invite = txn.insert_invite(code=code, domain_id=domain_id, issuer_id=issuer_user_id)
            logger.info("Invite %s created by user %s for domain %s", invite.id, issuer_user_id, domain_id)
            return invite
        raise StorageError("Unable to allocate a unique invite code")

    def find_redeemable(self, txn: Transaction, code: str, domain_id: int) -> Optional[Invite]:
        """Return the invite only if it is unredeemed and belongs to ``domain_id``."""

        if not code:
            return None
        invite = txn.get_invite_by_code(code.strip())
        if invite is None or invite.is_redeemed or invite.domain_id != domain_id:
            return None
        return invite

    def redeem(self, txn: Transaction, invite: Invite, redeeming_user_id: int) -> None:
        """Consume ``invite`` inside the caller's transaction.

        The update is guarded on the unredeemed status, so losing a race to
        another redemption raises :class:`InvalidInvite` and the caller's
        transaction rolls back.
        """

        if not txn.mark_invite_redeemed(invite.id, user_id=redeeming_user_id, consumed_at=self._clock()):
            raise InvalidInvite()


__all__ = ["INVITE_CODE_BYTES", "InviteRegistry", "generate_invite_code"]
