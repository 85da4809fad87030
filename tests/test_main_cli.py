from __future__ import annotations

from pathlib import Path

import pytest

from main import _parse_args, main


def test_default_command_invokes_serve() -> None:
    args = _parse_args([])
    assert args.command == "serve"


def test_default_command_accepts_options_without_subcommand() -> None:
    args = _parse_args(["--host", "127.0.0.1", "--port", "8080"])
    assert args.command == "serve"
    assert args.host == "127.0.0.1"
    assert args.port == 8080


def test_add_user_subcommand() -> None:
    args = _parse_args(["add-user", "postmaster", "example.com", "--admin"])
    assert args.command == "add-user"
    assert args.name == "postmaster"
    assert args.domain == "example.com"
    assert args.admin is True


def test_add_alias_subcommand() -> None:
    args = _parse_args(["add-alias", "example.com", "abuse", "postmaster@example.com"])
    assert args.command == "add-alias"
    assert (args.domain, args.source, args.destination) == ("example.com", "abuse", "postmaster@example.com")


def test_list_users_subcommand() -> None:
    args = _parse_args(["list-users"])
    assert args.command == "list-users"


def test_add_domain_then_list_users(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setenv("MERU_CONFIG", str(tmp_path / "absent.yaml"))
    monkeypatch.setenv("MERU_DB_PATH", str(tmp_path / "cli.sqlite3"))

    assert main(["add-domain", "example.com"]) == 0
    assert "Created domain #1: example.com" in capsys.readouterr().out

    assert main(["list-users"]) == 0
    assert "No users are currently registered." in capsys.readouterr().out

    assert main(["add-alias", "missing.example", "abuse", "root@example.com"]) == 1
    assert "No such domain" in capsys.readouterr().err
