"""Delivery of invite codes to the issuing mailbox."""

from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import List, Protocol
from urllib.parse import urlencode

from .config import MailConfig
from .errors import NotificationFailed

logger = logging.getLogger("meru.notifications")


@dataclass(frozen=True)
class InviteNotice:
    recipient: str
    invite_code: str
    domain_id: int
    delete_url: str
    signup_url: str


class InviteNotifier(Protocol):
    def send_invite(self, notice: InviteNotice) -> None:
        ...


def build_invite_notice(config: MailConfig, *, recipient: str, invite_code: str, domain_id: int) -> InviteNotice:
    query = urlencode({"invite": invite_code, "domain": domain_id})
    return InviteNotice(
        recipient=recipient,
        invite_code=invite_code,
        domain_id=domain_id,
        delete_url=f"{config.signup_delete_url}?{query}",
        signup_url=f"{config.signup_url}?{query}",
    )


def render_invite_body(notice: InviteNotice, signature: str) -> str:
    return (
        "Someone has requested an invite code with your address.\n"
        f"If this was not you, please go here: {notice.delete_url} to remove it.\n"
        "\n"
        "If it was you, please provide the link below to the person who wants to signup.\n"
        "Please recall that this works on a system of trust. Only invite a person whom you\n"
        "feel sure will not abuse the service. Spam will not be tolerated.\n"
        f"{notice.signup_url}\n"
        "\n"
        "Best,\n"
        f"{signature}\n"
    )


class SMTPInviteNotifier:
    """Send invite mails through an SMTP relay."""

    def __init__(self, config: MailConfig, *, timeout: float = 10.0) -> None:
        self._config = config
        self._timeout = timeout

    def build_message(self, notice: InviteNotice) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self._config.signup_from
        message["To"] = notice.recipient
        message["Subject"] = self._config.subject
        message.set_content(render_invite_body(notice, self._config.signup_signame))
        return message

    def send_invite(self, notice: InviteNotice) -> None:
        message = self.build_message(notice)
        try:
            with smtplib.SMTP(self._config.smtp_host, self._config.smtp_port, timeout=self._timeout) as smtp:
                smtp.send_message(message)
        except (OSError, smtplib.SMTPException) as exc:
            raise NotificationFailed(f"Invite mail to {notice.recipient} could not be sent: {exc}") from exc
        logger.info("Invite mail sent to %s", notice.recipient)


class NullNotifier:
    """Notifier used when mail delivery is disabled; records notices instead."""

    def __init__(self) -> None:
        self.sent: List[InviteNotice] = []

    def send_invite(self, notice: InviteNotice) -> None:
        self.sent.append(notice)
        logger.info("Mail delivery disabled; invite for %s not sent", notice.recipient)


def build_notifier(config: MailConfig) -> InviteNotifier:
    if config.enabled:
        return SMTPInviteNotifier(config)
    return NullNotifier()


__all__ = [
    "InviteNotice",
    "InviteNotifier",
    "NullNotifier",
    "SMTPInviteNotifier",
    "build_invite_notice",
    "build_notifier",
    "render_invite_body",
]
