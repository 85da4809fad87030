from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from meru.accounts import AccountProvisioner
from meru.config import MeruConfig
from meru.database import Database
from meru.identity import UniquenessChecker
from meru.invites import InviteRegistry
from meru.models import Domain, User
from meru.notifications import NullNotifier
from meru.passwords import PasswordCodec
from meru.service import MeruService
from meru.sessions import SessionManager

ADMIN_PASSWORD = "postmaster-password"


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture()
def database(tmp_path: Path) -> Database:
    db = Database(tmp_path / "meru.sqlite3")
    db.initialize()
    return db


@pytest.fixture()
def passwords() -> PasswordCodec:
    return PasswordCodec(rounds=4)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def domain(database: Database) -> Domain:
    return database.create_domain("example.com")


@pytest.fixture()
def invites(database: Database) -> InviteRegistry:
    return InviteRegistry(database)


@pytest.fixture()
def provisioner(database: Database, passwords: PasswordCodec, invites: InviteRegistry) -> AccountProvisioner:
    return AccountProvisioner(database, passwords, invites, UniquenessChecker())


@pytest.fixture()
def admin(provisioner: AccountProvisioner, domain: Domain) -> User:
    return provisioner.create_initial_account("postmaster", ADMIN_PASSWORD, domain.id)


@pytest.fixture()
def sessions(database: Database, passwords: PasswordCodec, clock: FakeClock) -> SessionManager:
    return SessionManager(database, passwords, clock=clock)


@pytest.fixture()
def notifier() -> NullNotifier:
    return NullNotifier()


@pytest.fixture()
def service(
    database: Database,
    passwords: PasswordCodec,
    sessions: SessionManager,
    notifier: NullNotifier,
) -> MeruService:
    config = MeruConfig(bcrypt_rounds=4, secure_cookies=False)
    return MeruService(database, config=config, passwords=passwords, notifier=notifier, sessions=sessions)
