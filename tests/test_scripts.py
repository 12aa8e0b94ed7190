import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from scripts import create_api_key, create_user
from usermanager.database import Database


def test_create_api_key_prints_random_value(capsys: pytest.CaptureFixture[str]) -> None:
    assert create_api_key.main([]) == 0
    first = capsys.readouterr().out.splitlines()[1]

    assert create_api_key.main([]) == 0
    second = capsys.readouterr().out.splitlines()[1]

    assert len(first) >= 40
    assert first != second


def test_create_api_key_refuses_short_keys() -> None:
    assert create_api_key.main(["--bytes", "8"]) == 1


def test_create_user_script_seeds_database(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    db_path = tmp_path / "seed.sqlite3"
    monkeypatch.setenv("MAX_USERS", "1")
    monkeypatch.setattr(
        sys, "argv", ["create_user.py", "Root", "root@example.com", "--role", "admin", "--db", str(db_path)]
    )

    assert create_user.main() == 0
    assert "root@example.com" in capsys.readouterr().out

    users = Database(db_path).list_users()
    assert [(user.email, user.role.value) for user in users] == [("root@example.com", "admin")]

    monkeypatch.setattr(
        sys, "argv", ["create_user.py", "Second", "second@example.com", "--db", str(db_path)]
    )
    assert create_user.main() == 1
    assert "Maximum users limit (1) reached" in capsys.readouterr().err
