from pathlib import Path

import httpx
import pytest

import main
from main import _parse_args
from usermanager.config import Settings
from usermanager.database import Database
from usermanager.models import Role


def test_default_command_invokes_serve() -> None:
    args = _parse_args([])
    assert args.command == "serve"


def test_default_command_accepts_options_without_subcommand() -> None:
    args = _parse_args(["--host", "127.0.0.1", "--port", "8080"])
    assert args.command == "serve"
    assert args.host == "127.0.0.1"
    assert args.port == 8080


def test_config_option_precedes_subcommand() -> None:
    args = _parse_args(["--config", "service.yaml", "list-users"])
    assert args.command == "list-users"
    assert args.config_path == "service.yaml"


def test_config_option_accepts_equals_form() -> None:
    args = _parse_args(["--config=service.yaml", "--port", "9000"])
    assert args.command == "serve"
    assert args.config_path == "service.yaml"
    assert args.port == 9000


def test_status_subcommand_accepts_service_url() -> None:
    args = _parse_args(["status", "--service-url", "http://users.internal:3000"])
    assert args.command == "status"
    assert args.service_url == "http://users.internal:3000"


def test_list_users_prints_table(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    database = Database(tmp_path / "users.sqlite3")
    database.initialize()
    database.create_user("Ada", "ada@example.com", Role.ADMIN)

    assert main._list_users(database) == 0

    output = capsys.readouterr().out
    assert "1 user(s) found" in output
    assert "ada@example.com" in output
    assert "admin" in output


def test_status_reports_health_and_stats(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    responses = {
        "http://svc:3000/health": httpx.Response(
            200, json={"status": "healthy", "timestamp": "2024-01-01T00:00:00.000Z", "database": "connected"}
        ),
        "http://svc:3000/api/stats": httpx.Response(
            200, json={"totalUsers": 4, "adminCount": 1, "activeUsers": 3}
        ),
    }
    requested = []

    def fake_get(url: str, timeout: float):
        requested.append(url)
        return responses[url]

    monkeypatch.setattr(main.httpx, "get", fake_get)

    assert main._show_status(Settings(), "http://svc:3000/") == 0

    output = capsys.readouterr().out
    assert requested == ["http://svc:3000/health", "http://svc:3000/api/stats"]
    assert "Database: connected" in output
    assert "Users:    4" in output
    assert "Active:   3" in output


def test_status_handles_unreachable_service(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    def fake_get(url: str, timeout: float):
        raise httpx.ConnectError("connection refused")

    monkeypatch.setattr(main.httpx, "get", fake_get)

    assert main._show_status(Settings(port=4000), None) == 1
    assert "http://localhost:4000" in capsys.readouterr().out
