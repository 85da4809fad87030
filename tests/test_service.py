"""End-to-end tests for the request handler and its discriminated results."""

from __future__ import annotations

import logging

import pytest

from meru.errors import NotificationFailed
from meru.models import Domain, User
from meru.notifications import InviteNotice, NullNotifier
from meru.service import MeruService

from conftest import ADMIN_PASSWORD

IP = "192.0.2.44"


class FailingNotifier:
    def __init__(self, exc: Exception) -> None:
        self._exc = exc
        self.notices: list[InviteNotice] = []

    def send_invite(self, notice: InviteNotice) -> None:
        self.notices.append(notice)
        raise self._exc


def _issue_invite(service: MeruService, notifier: NullNotifier) -> InviteNotice:
    result = service.handle("CreateInvite", {"email": "postmaster@example.com"})
    assert result.ok, result
    return notifier.sent[-1]


def test_signup_scenario(service: MeruService, notifier: NullNotifier, admin: User, domain: Domain) -> None:
    notice = _issue_invite(service, notifier)
    payload = {"user": "Alice", "password": "longpassword1", "invite": notice.invite_code, "domain": "example.com"}

    created = service.handle("CreateAccount", payload)
    assert created.to_payload() == {"ok": True}

    repeated = service.handle("CreateAccount", payload)
    assert repeated.to_payload() == {
        "ok": False,
        "errorKind": "InvalidInvite",
        "message": "Invalid invite",
        "statusHint": 400,
    }


def test_validation_failures_carry_kind_and_status(service: MeruService, domain: Domain) -> None:
    bad_name = service.handle(
        "CreateAccount", {"user": "bad-name", "password": "longpassword1", "invite": "x", "domain": "example.com"}
    )
    assert bad_name.error is not None
    assert bad_name.error.kind == "InvalidName"
    assert bad_name.status_hint == 400

    weak = service.handle(
        "CreateAccount", {"user": "alice", "password": "short", "invite": "x", "domain": "example.com"}
    )
    assert weak.error is not None
    assert weak.error.kind == "WeakPassword"

    unknown = service.handle(
        "CreateAccount", {"user": "alice", "password": "longpassword1", "invite": "x", "domain": "nope.example"}
    )
    assert unknown.error is not None
    assert unknown.error.kind == "UnknownDomain"
    assert unknown.status_hint == 404


def test_login_validate_logout(service: MeruService, admin: User) -> None:
    login = service.handle("Login", {"email": "postmaster@example.com", "password": ADMIN_PASSWORD}, client_ip=IP)
    assert login.ok
    token = login.data["token"]

    valid = service.handle("ValidateSession", {"token": token, "clientIp": IP})
    assert valid.to_payload() == {"ok": True, "userId": admin.id, "anonymous": False}

    elsewhere = service.handle("ValidateSession", {"token": token, "clientIp": "203.0.113.1"})
    assert elsewhere.to_payload() == {"ok": True, "userId": None, "anonymous": True}

    assert service.handle("Logout", {"token": token}).ok
    assert service.handle("Logout", {"token": token}).ok

    after = service.handle("ValidateSession", {"token": token}, client_ip=IP)
    assert after.data["anonymous"] is True


def test_wrong_password_is_invalid_credentials(service: MeruService, admin: User) -> None:
    wrong = service.handle("Login", {"email": "postmaster@example.com", "password": "wrongpassword"}, client_ip=IP)
    missing = service.handle("Login", {"email": "alice@example.com", "password": "wrongpassword"}, client_ip=IP)

    assert wrong.to_payload() == missing.to_payload()
    assert wrong.to_payload()["errorKind"] == "InvalidCredentials"
    assert wrong.status_hint == 404


def test_create_invite_builds_links(service: MeruService, notifier: NullNotifier, admin: User, domain: Domain) -> None:
    result = service.create_invite("Postmaster@Example.com")

    assert result.ok
    assert "inviteCode" not in result.data
    notice = notifier.sent[-1]
    assert notice.recipient == "postmaster@example.com"
    assert notice.domain_id == domain.id
    assert notice.signup_url.endswith(f"?invite={notice.invite_code}&domain={domain.id}")
    assert notice.delete_url.endswith(f"?invite={notice.invite_code}&domain={domain.id}")


def test_create_invite_for_unknown_issuer(service: MeruService, domain: Domain) -> None:
    result = service.create_invite("ghost@example.com")

    assert result.error is not None
    assert result.error.kind == "UnknownAccount"
    assert result.status_hint == 404


@pytest.mark.parametrize("exc", [NotificationFailed("relay refused"), RuntimeError("mailer crashed")])
def test_notification_failure_is_a_warning(service: MeruService, admin: User, exc: Exception) -> None:
    failing = FailingNotifier(exc)
    service.notifier = failing

    result = service.create_invite("postmaster@example.com")

    assert len(failing.notices) == 1
    assert result.ok
    assert result.warnings
    assert result.warnings[0].startswith("NotificationFailed")
    assert result.status_hint == 200
    payload = result.to_payload()
    assert payload["ok"] is True
    assert payload["warnings"] == result.warnings
    invite = service.database.get_invite(failing.notices[0].invite_code)
    assert invite is not None
    assert invite.id == result.data["inviteId"]
    assert not invite.is_redeemed


def test_change_password_operation(service: MeruService, admin: User) -> None:
    result = service.handle(
        "ChangePassword",
        {"email": "postmaster@example.com", "oldpassword": ADMIN_PASSWORD, "newpassword": "new-long-password"},
    )
    assert result.ok

    login = service.handle("Login", {"email": "postmaster@example.com", "password": "new-long-password"}, client_ip=IP)
    assert login.ok


def test_get_domain(service: MeruService, domain: Domain) -> None:
    assert service.handle("GetDomain", {"id": domain.id}).to_payload() == {
        "ok": True,
        "id": domain.id,
        "name": "example.com",
    }
    missing = service.handle("GetDomain", {"id": 999})
    assert missing.error is not None
    assert missing.error.kind == "UnknownDomain"


def test_unknown_operation_is_rejected(service: MeruService) -> None:
    with pytest.raises(ValueError):
        service.handle("DropTables", {})
    assert "CreateAccount" in service.operations


@pytest.mark.parametrize("ref", ["99999999999999999999999", "²", "-9223372036854775809"])
def test_out_of_range_domain_refs_are_unknown(service: MeruService, admin: User, ref: str) -> None:
    lookup = service.handle("GetDomain", {"id": ref})
    assert lookup.error is not None
    assert lookup.error.kind == "UnknownDomain"
    assert lookup.status_hint == 404

    signup = service.handle(
        "CreateAccount",
        {"user": "alice", "password": "longpassword1", "invite": "abc123", "domain": ref},
    )
    assert signup.error is not None
    assert signup.error.kind == "UnknownDomain"


def test_unexpected_fault_is_logged_and_propagated(
    service: MeruService, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    def broken_logout(token: str) -> None:
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(service.sessions, "logout", broken_logout)

    with caplog.at_level(logging.ERROR, logger="meru.service"):
        with pytest.raises(RuntimeError):
            service.handle("Logout", {"token": "abc"})

    record = next(r for r in caplog.records if r.name == "meru.service")
    assert "Logout failed unexpectedly" in record.getMessage()
    assert record.exc_info is not None


def test_delivery_failure_is_a_server_class_error() -> None:
    failure = NotificationFailed()
    assert failure.status_hint == 500
    assert failure.kind == "NotificationFailed"
