"""Mailbox identity rules: local-part grammar and namespace uniqueness."""

from __future__ import annotations

import re
from typing import Tuple

from .database import Transaction
from .errors import InvalidName

MAX_LOCAL_PART_LENGTH = 100

# RFC 5322 dot-atom: atext runs separated by single dots.
_ATEXT = r"[A-Za-z0-9!#$%&'*+/=?^_`{|}~-]+"
_DOT_ATOM = re.compile(rf"^{_ATEXT}(?:\.{_ATEXT})*$")


def normalize_local_part(name: str) -> str:
    return name.strip().lower()


def validate_local_part(name: str) -> str:
    """Return the normalised local-part or raise :class:`InvalidName`.

    Hyphens and ``@`` are refused even though the address grammar allows them
    in some forms.
    """

    normalized = normalize_local_part(name)
    if not normalized or len(normalized) > MAX_LOCAL_PART_LENGTH:
        raise InvalidName()
    if "@" in normalized or "-" in normalized:
        raise InvalidName()
    if not _DOT_ATOM.match(normalized):
        raise InvalidName()
    return normalized


def split_email(email: str) -> Tuple[str, str] | None:
    """Split ``local@domain`` into its normalised parts, or ``None``."""

    parts = email.strip().lower().split("@")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        return None
    return parts[0], parts[1]


class UniquenessChecker:
    """Answer whether a local identity is already claimed in a domain.

    The check must run on the same transaction as the write that follows it.
    The ``identities`` table backs it with a constraint over mailboxes and
    aliases together, so a racing insert fails even if both checks passed.
    """

    def is_identity_taken(self, txn: Transaction, domain_id: int, local_part: str) -> bool:
        normalized = normalize_local_part(local_part)
        return txn.user_exists(domain_id, normalized) or txn.alias_exists(domain_id, normalized)


__all__ = [
    "MAX_LOCAL_PART_LENGTH",
    "UniquenessChecker",
    "normalize_local_part",
    "split_email",
    "validate_local_part",
]
