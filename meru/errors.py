"""Typed failures raised by the account and session core."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    INVALID_NAME = "InvalidName"
    WEAK_PASSWORD = "WeakPassword"
    UNKNOWN_DOMAIN = "UnknownDomain"
    UNKNOWN_ACCOUNT = "UnknownAccount"
    IDENTITY_TAKEN = "IdentityTaken"
    INVALID_INVITE = "InvalidInvite"
    INVALID_CREDENTIALS = "InvalidCredentials"
    STORAGE_ERROR = "StorageError"
    NOTIFICATION_FAILED = "NotificationFailed"


class MeruError(Exception):
    """Base class for every failure the core reports to its callers.

    ``kind`` survives end-to-end to the transport layer and ``status_hint``
    names the HTTP-like status class the failure belongs to.
    """

    kind: ErrorKind = ErrorKind.STORAGE_ERROR
    status_hint: int = 500
    default_message: str = "Internal storage failure"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidName(MeruError):
    kind = ErrorKind.INVALID_NAME
    status_hint = 400
    default_message = "Invalid username"


class WeakPassword(MeruError):
    kind = ErrorKind.WEAK_PASSWORD
    status_hint = 400
    default_message = "Invalid password"


class UnknownDomain(MeruError):
    kind = ErrorKind.UNKNOWN_DOMAIN
    status_hint = 404
    default_message = "No such domain"


class UnknownAccount(MeruError):
    kind = ErrorKind.UNKNOWN_ACCOUNT
    status_hint = 404
    default_message = "No such email"


class IdentityTaken(MeruError):
    kind = ErrorKind.IDENTITY_TAKEN
    status_hint = 400
    default_message = "Username taken"


class InvalidInvite(MeruError):
    kind = ErrorKind.INVALID_INVITE
    status_hint = 400
    default_message = "Invalid invite"


class InvalidCredentials(MeruError):
    kind = ErrorKind.INVALID_CREDENTIALS
    status_hint = 404
    default_message = "Invalid email or password"


class StorageError(MeruError):
    """Transaction or connectivity failure.

    Callers only see the generic message; ``detail`` carries the driver error
    for logs.
    """

    kind = ErrorKind.STORAGE_ERROR
    status_hint = 500

    def __init__(self, detail: str | None = None) -> None:
        super().__init__()
        self.detail = detail or self.message

    def __str__(self) -> str:
        return self.detail


class NotificationFailed(MeruError):
    """Raised by notifiers when an invite mail cannot be delivered.

    The invite itself is kept, so callers report this as a warning on a
    successful result rather than as a failure.
    """

    kind = ErrorKind.NOTIFICATION_FAILED
    status_hint = 500
    default_message = "Invite notification could not be delivered"


__all__ = [
    "ErrorKind",
    "IdentityTaken",
    "InvalidCredentials",
    "InvalidInvite",
    "InvalidName",
    "MeruError",
    "NotificationFailed",
    "StorageError",
    "UnknownAccount",
    "UnknownDomain",
    "WeakPassword",
]
