"""Configuration management for the Meru account service."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Dict, Optional

import yaml

from .passwords import DEFAULT_BCRYPT_ROUNDS
from .sessions import DEFAULT_SESSION_TTL


@dataclass(frozen=True)
class MailConfig:
    """Settings for the invite notification mail."""

    enabled: bool = False
    signup_from: str = "signup@localhost"
    subject: str = "Your signup invite"
    signup_url: str = "http://localhost/signup"
    signup_delete_url: str = "http://localhost/signup/delete"
    signup_signame: str = "The mail admins"
    smtp_host: str = "localhost"
    smtp_port: int = 25

    @staticmethod
    def from_dict(data: Dict[str, object]) -> "MailConfig":
        defaults = MailConfig()
        return MailConfig(
            enabled=bool(data.get("enabled", defaults.enabled)),
            signup_from=str(data.get("signup_from", defaults.signup_from)),
            subject=str(data.get("subject", defaults.subject)),
            signup_url=str(data.get("signup_url", defaults.signup_url)),
            signup_delete_url=str(data.get("signup_delete_url", defaults.signup_delete_url)),
            signup_signame=str(data.get("signup_signame", defaults.signup_signame)),
            smtp_host=str(data.get("smtp_host", defaults.smtp_host)),
            smtp_port=int(data.get("smtp_port", defaults.smtp_port)),
        )


@dataclass(frozen=True)
class MeruConfig:
    database_path: Optional[Path] = None
    session_ttl: timedelta = DEFAULT_SESSION_TTL
    bcrypt_rounds: int = DEFAULT_BCRYPT_ROUNDS
    secure_cookies: bool = True
    mail: MailConfig = field(default_factory=MailConfig)

    @staticmethod
    def from_dict(data: Dict[str, object], base_path: Path | None = None) -> "MeruConfig":
        """Create a :class:`MeruConfig` from raw dictionary data."""

        database = data.get("database") or {}
        if not isinstance(database, dict):
            raise ValueError("'database' must be a mapping")
        raw_path = database.get("path")
        database_path: Optional[Path] = None
        if raw_path:
            candidate = Path(str(raw_path)).expanduser()
            if not candidate.is_absolute() and base_path is not None:
                candidate = base_path / candidate
            database_path = candidate.resolve(strict=False)

        sessions = data.get("sessions") or {}
        if not isinstance(sessions, dict):
            raise ValueError("'sessions' must be a mapping")
        ttl_seconds = int(sessions.get("ttl_seconds", DEFAULT_SESSION_TTL.total_seconds()))
        if ttl_seconds <= 0:
            raise ValueError("sessions.ttl_seconds must be positive")

        passwords = data.get("passwords") or {}
        if not isinstance(passwords, dict):
            raise ValueError("'passwords' must be a mapping")

        mail = data.get("mail") or {}
        if not isinstance(mail, dict):
            raise ValueError("'mail' must be a mapping")

        return MeruConfig(
            database_path=database_path,
            session_ttl=timedelta(seconds=ttl_seconds),
            bcrypt_rounds=int(passwords.get("bcrypt_rounds", DEFAULT_BCRYPT_ROUNDS)),
            secure_cookies=bool(sessions.get("secure_cookies", True)),
            mail=MailConfig.from_dict(mail),
        )


def load_config(config_path: Path) -> MeruConfig:
    """Load settings from a YAML file; a missing file yields the defaults."""

    if not config_path.exists():
        return MeruConfig()
    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    if not isinstance(raw, dict):
        raise ValueError("Configuration file must contain a mapping at the top level")
    return MeruConfig.from_dict(raw, base_path=config_path.parent)


def resolve_config_path(env_value: Optional[str]) -> Path:
    """Resolve the path to the configuration file."""
    if env_value:
        candidate = Path(env_value).expanduser().resolve(strict=False)
    else:
        candidate = (Path(__file__).resolve().parent.parent / "config" / "meru.yaml").resolve(strict=False)
    return candidate


def load_config_from_env() -> MeruConfig:
    return load_config(resolve_config_path(os.getenv("MERU_CONFIG")))


__all__ = ["MailConfig", "MeruConfig", "load_config", "load_config_from_env", "resolve_config_path"]
