"""Request handler mapping named operations onto the account core."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Mapping, Optional

from .accounts import AccountProvisioner
from .config import MeruConfig
from .database import Database, resolve_database_path
from .errors import MeruError, NotificationFailed, UnknownAccount, UnknownDomain
from .identity import UniquenessChecker, split_email
from .invites import InviteRegistry
from .notifications import InviteNotifier, build_invite_notice, build_notifier
from .passwords import PasswordCodec
from .results import OperationResult
from .sessions import SessionManager

logger = logging.getLogger("meru.service")


def _field(payload: Mapping[str, Any], name: str) -> str:
    value = payload.get(name)
    return "" if value is None else str(value)


class MeruService:
    """Run one operation per request and return an :class:`OperationResult`.

    Typed core failures become ``ok: false`` results carrying their kind and
    status hint. Anything else is logged and propagated to the transport.
    """

    def __init__(
        self,
        database: Database,
        *,
        config: Optional[MeruConfig] = None,
        passwords: Optional[PasswordCodec] = None,
        notifier: Optional[InviteNotifier] = None,
        sessions: Optional[SessionManager] = None,
    ) -> None:
        self.config = config or MeruConfig()
        self.database = database
        self.passwords = passwords or PasswordCodec(rounds=self.config.bcrypt_rounds)
        self.invites = InviteRegistry(database)
        self.accounts = AccountProvisioner(database, self.passwords, self.invites, UniquenessChecker())
        self.sessions = sessions or SessionManager(database, self.passwords, ttl=self.config.session_ttl)
        self.notifier = notifier or build_notifier(self.config.mail)
        self._operations: Dict[str, Callable[[Mapping[str, Any], Optional[str]], OperationResult]] = {
            "CreateAccount": lambda payload, _ip: self.create_account(
                _field(payload, "user"),
                _field(payload, "password"),
                _field(payload, "invite"),
                _field(payload, "domain"),
            ),
            "ChangePassword": lambda payload, _ip: self.change_password(
                _field(payload, "email"),
                _field(payload, "oldpassword"),
                _field(payload, "newpassword"),
            ),
            "Login": lambda payload, ip: self.login(
                _field(payload, "email"),
                _field(payload, "password"),
                ip or "",
            ),
            "ValidateSession": lambda payload, ip: self.validate_session(
                _field(payload, "token"),
                _field(payload, "clientIp") or ip or "",
            ),
            "Logout": lambda payload, _ip: self.logout(_field(payload, "token")),
            "CreateInvite": lambda payload, _ip: self.create_invite(_field(payload, "email")),
            "GetDomain": lambda payload, _ip: self.get_domain(_field(payload, "id")),
        }

    @property
    def operations(self) -> list[str]:
        return sorted(self._operations)

    def handle(self, operation: str, payload: Mapping[str, Any], client_ip: Optional[str] = None) -> OperationResult:
        try:
            handler = self._operations[operation]
        except KeyError as exc:
            raise ValueError(f"Unknown operation '{operation}'") from exc
        return handler(payload, client_ip)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------
    def create_account(self, user: str, password: str, invite: str, domain: str) -> OperationResult:
        def run() -> Dict[str, Any]:
            self.accounts.create_account(user, password, invite, domain)
            return {}

        return self._run("CreateAccount", run)

    def change_password(self, email: str, old_password: str, new_password: str) -> OperationResult:
        def run() -> Dict[str, Any]:
            self.accounts.change_password(email, old_password, new_password)
            return {}

        return self._run("ChangePassword", run)

    def login(self, email: str, password: str, client_ip: str) -> OperationResult:
        return self._run("Login", lambda: {"token": self.sessions.login(email, password, client_ip)})

    def validate_session(self, token: str, client_ip: str) -> OperationResult:
        def run() -> Dict[str, Any]:
            user_id = self.sessions.validate(token, client_ip)
            return {"userId": user_id, "anonymous": user_id is None}

        return self._run("ValidateSession", run)

    def logout(self, token: str) -> OperationResult:
        def run() -> Dict[str, Any]:
            self.sessions.logout(token)
            return {}

        return self._run("Logout", run)

    def get_domain(self, domain: str) -> OperationResult:
        def run() -> Dict[str, Any]:
            found = self.database.get_domain(domain) if domain else None
            if found is None:
                raise UnknownDomain()
            return {"id": found.id, "name": found.name}

        return self._run("GetDomain", run)

    def create_invite(self, email: str) -> OperationResult:
        op = "CreateInvite"
        try:
            parts = split_email(email)
            found = None
            if parts is not None:
                with self.database.connection() as txn:
                    found = txn.find_credentials(*parts)
            if found is None:
                raise UnknownAccount()
            issuer = found[0]
            invite = self.invites.create_invite(issuer.id, issuer.domain_id)
        except MeruError as exc:
            if exc.status_hint >= 500:
                logger.error("%s failed: %s", op, exc.message)
            return OperationResult.failure(op, exc)
        except Exception:
            logger.exception("%s failed unexpectedly", op)
            raise

        notice = build_invite_notice(
            self.config.mail,
            recipient=issuer.email,
            invite_code=invite.code,
            domain_id=invite.domain_id,
        )
        warnings: list[str] = []
        try:
            self.notifier.send_invite(notice)
        except NotificationFailed as exc:
            logger.warning("Invite %s created but not delivered: %s", invite.id, exc.message)
            warnings.append(f"{exc.kind.value}: {exc.message}")
        except Exception:
            logger.exception("Invite notifier failed for invite %s", invite.id)
            failure = NotificationFailed()
            warnings.append(f"{failure.kind.value}: {failure.message}")

        return OperationResult.success(op, {"inviteId": invite.id, "domainId": invite.domain_id}, warnings)

    def _run(self, op: str, action: Callable[[], Dict[str, Any]]) -> OperationResult:
        try:
            data = action()
        except MeruError as exc:
            if exc.status_hint >= 500:
                logger.error("%s failed: %s", op, exc.message)
            return OperationResult.failure(op, exc)
        except Exception:
            logger.exception("%s failed unexpectedly", op)
            raise
        return OperationResult.success(op, data)


def build_service(config: MeruConfig, *, database_path: Optional[str] = None) -> MeruService:
    """Wire a service from configuration, initialising the database."""

    if database_path:
        path = resolve_database_path(database_path)
    elif config.database_path is not None:
        path = config.database_path
    else:
        path = resolve_database_path(None)
    database = Database(path)
    database.initialize()
    return MeruService(database, config=config)


__all__ = ["MeruService", "build_service"]
