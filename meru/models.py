"""Domain models persisted by the Meru account database."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class InviteStatus(str, Enum):
    UNREDEEMED = "unredeemed"
    REDEEMED = "redeemed"


@dataclass(frozen=True)
class Domain:
    """A mail domain that mailboxes and invites belong to."""

    id: int
    name: str


@dataclass(frozen=True)
class User:
    """A mailbox account. The password hash never leaves the database layer."""

    id: int
    name: str
    domain_id: int
    domain_name: str
    is_admin: bool
    created_at: datetime

    @property
    def email(self) -> str:
        return f"{self.name}@{self.domain_name}"


@dataclass(frozen=True)
class Alias:
    """A forwarding identity occupying the same namespace as mailboxes."""

    id: int
    domain_id: int
    source: str
    destination: str


@dataclass(frozen=True)
class Invite:
    id: int
    code: str
    domain_id: int
    issuer_id: int
    status: InviteStatus
    redeemed_by: Optional[int]
    created_at: datetime
    consumed_at: Optional[datetime]

    @property
    def is_redeemed(self) -> bool:
        return self.status is InviteStatus.REDEEMED


@dataclass(frozen=True)
class Session:
    """A login session bound to one user and one client address."""

    id: int
    user_id: int
    token: str
    created_at: datetime
    ip: str


__all__ = ["Alias", "Domain", "Invite", "InviteStatus", "Session", "User"]
