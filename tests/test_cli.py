"""
tests/test_cli.py -- Tests for the operator command line in main.py.

Each test points DATABASE_URL at its own SQLite file and pins SECRET_KEY,
then clears the get_settings() cache so main() sees the new environment.
"""

from __future__ import annotations

import pytest

import main as cli
from core.config import get_settings

SECRET = "c" * 48


@pytest.fixture(autouse=True)
def cli_env(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}")
    monkeypatch.setenv("SECRET_KEY", SECRET)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def _created_user_id(output: str) -> str:
    line = next(line for line in output.splitlines() if line.startswith("Created user "))
    return line.removeprefix("Created user ").strip()


def test_create_issue_and_check(capsys) -> None:
    assert cli.main(["create-user", "--email", "ops@example.com", "--password", "opspassword"]) == 0
    user_id = _created_user_id(capsys.readouterr().out)

    assert cli.main(["issue-token", user_id]) == 0
    token = capsys.readouterr().out.strip()

    assert cli.main(["check-token", token]) == 0
    assert f"Valid token for subject {user_id}" in capsys.readouterr().out


def test_create_duplicate_user_fails(capsys) -> None:
    assert cli.main(["create-user", "--email", "ops@example.com", "--password", "opspassword"]) == 0
    assert cli.main(["create-user", "--email", "ops@example.com", "--password", "opspassword"]) == 1
    assert "already exists" in capsys.readouterr().out


def test_issue_token_for_unknown_user(capsys) -> None:
    assert cli.main(["issue-token", "00000000-0000-0000-0000-000000000000"]) == 1
    assert "No user" in capsys.readouterr().out


def test_check_token_rejects_garbage(capsys) -> None:
    assert cli.main(["check-token", "not-a-token"]) == 1
    assert "malformed_token" in capsys.readouterr().out


def test_create_user_requires_identifier() -> None:
    with pytest.raises(SystemExit):
        cli.main(["create-user", "--password", "opspassword"])
