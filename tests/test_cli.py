"""Tests for the management CLI in main.py."""

import io
import logging

import pytest

import main as cli
from auth.models import Role
from auth.store import IdentityStore


@pytest.fixture(autouse=True)
def _restore_root_logging():
    """main() reconfigures the root logger; put the test session's handlers back."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'cli.db'}"


def _create(db_url: str, monkeypatch, password: str = "Admin@1234", name: str = "Site Admin") -> int:
    monkeypatch.setattr("sys.stdin", io.StringIO(password + "\n"))
    return cli.main(
        ["--database-url", db_url, "create-admin", "--email", "Admin@Example.com", "--name", name, "--password-stdin"]
    )


class TestCreateAdmin:
    def test_creates_active_admin(self, db_url, monkeypatch, capsys) -> None:
        assert _create(db_url, monkeypatch) == 0
        assert "Admin created" in capsys.readouterr().out

        store = IdentityStore(db_url=db_url)
        try:
            admin = store.get_by_email("admin@example.com")
        finally:
            store.close()
        assert admin is not None
        assert admin.role is Role.admin
        assert admin.is_active
        assert admin.hashed_password.startswith("$2")

    def test_duplicate_email(self, db_url, monkeypatch, capsys) -> None:
        assert _create(db_url, monkeypatch) == 0
        assert _create(db_url, monkeypatch) == 1
        assert "[!]" in capsys.readouterr().out

    def test_short_password(self, db_url, monkeypatch, capsys) -> None:
        assert _create(db_url, monkeypatch, password="short") == 1
        assert "at least 8" in capsys.readouterr().out

    def test_password_over_72_bytes(self, db_url, monkeypatch) -> None:
        assert _create(db_url, monkeypatch, password="a" * 73) == 1

    def test_blank_name(self, db_url, monkeypatch, capsys) -> None:
        assert _create(db_url, monkeypatch, name="   ") == 1
        assert "Name must be" in capsys.readouterr().out

    def test_mismatched_interactive_passwords(self, db_url, monkeypatch) -> None:
        answers = iter(["Admin@1234", "Other@1234"])
        monkeypatch.setattr("getpass.getpass", lambda prompt="": next(answers))
        rc = cli.main(["--database-url", db_url, "create-admin", "--email", "a@example.com", "--name", "A"])
        assert rc == 1


class TestListUsers:
    def test_lists_created_admin(self, db_url, monkeypatch, capsys) -> None:
        _create(db_url, monkeypatch)
        capsys.readouterr()
        assert cli.main(["--database-url", db_url, "list-users"]) == 0
        out = capsys.readouterr().out
        assert "1 user(s), 1 active admin(s)" in out
        assert "admin@example.com" in out


def test_no_command_prints_help(capsys) -> None:
    assert cli.main([]) == 2
    assert "create-admin" in capsys.readouterr().out
