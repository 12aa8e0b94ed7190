from __future__ import annotations

import sqlite3
import threading
from pathlib import Path

import pytest

from usermanager.database import (
    CapacityExceededError,
    Database,
    DuplicateEmailError,
    StoreError,
    UserValidationError,
    is_valid_user_id,
)
from usermanager.models import Role


@pytest.fixture()
def database(tmp_path: Path) -> Database:
    db_path = tmp_path / "users.sqlite3"
    db = Database(db_path)
    db.initialize()
    return db


def test_create_and_fetch_user(database: Database) -> None:
    user = database.create_user("  Ada Lovelace ", "Ada@Example.com", Role.ADMIN)

    assert is_valid_user_id(user.id)
    assert user.name == "Ada Lovelace"
    assert user.email == "ada@example.com"
    assert user.role is Role.ADMIN
    assert user.created_at.tzinfo is not None

    assert database.get_user(user.id) == user
    assert database.get_user_by_email("ADA@example.com ") == user


def test_list_users_returns_newest_first(database: Database) -> None:
    first = database.create_user("First", "first@example.com", Role.USER)
    second = database.create_user("Second", "second@example.com", Role.USER)
    third = database.create_user("Third", "third@example.com", Role.GUEST)

    assert [user.id for user in database.list_users()] == [third.id, second.id, first.id]


def test_duplicate_email_is_rejected_by_the_store(database: Database) -> None:
    database.create_user("One", "same@example.com", Role.USER)
    with pytest.raises(DuplicateEmailError, match="Email already exists"):
        database.create_user("Two", "SAME@example.com", Role.GUEST)
    assert database.count_users() == 1


def test_capacity_is_checked_inside_the_insert(database: Database) -> None:
    database.create_user("One", "one@example.com", Role.USER, max_users=2)
    database.create_user("Two", "two@example.com", Role.USER, max_users=2)

    with pytest.raises(CapacityExceededError) as excinfo:
        database.create_user("Three", "three@example.com", Role.USER, max_users=2)

    assert str(excinfo.value) == "Maximum users limit (2) reached"
    assert excinfo.value.max_users == 2
    assert database.count_users() == 2


def _create_concurrently(db_path: Path, emails: list[str], max_users: int) -> tuple[list, list]:
    barrier = threading.Barrier(len(emails))
    created: list = []
    failures: list = []
    lock = threading.Lock()

    def worker(index: int, email: str) -> None:
        store = Database(db_path)
        barrier.wait()
        try:
            user = store.create_user(f"Worker {index}", email, Role.USER, max_users=max_users)
        except Exception as exc:  # collected and asserted by the caller
            with lock:
                failures.append(exc)
        else:
            with lock:
                created.append(user)

    threads = [
        threading.Thread(target=worker, args=(index, email)) for index, email in enumerate(emails)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    return created, failures


def test_concurrent_creates_never_exceed_capacity(database: Database) -> None:
    emails = [f"user{index}@example.com" for index in range(20)]

    created, failures = _create_concurrently(database.path, emails, max_users=5)

    assert len(created) == 5
    assert database.count_users() == 5
    assert len(failures) == 15
    assert all(isinstance(exc, CapacityExceededError) for exc in failures)


def test_concurrent_creates_with_one_email_store_one_row(database: Database) -> None:
    emails = ["shared@example.com"] * 20

    created, failures = _create_concurrently(database.path, emails, max_users=100)

    assert len(created) == 1
    assert database.count_users() == 1
    assert all(isinstance(exc, DuplicateEmailError) for exc in failures)


def test_blank_name_is_a_validation_error(database: Database) -> None:
    with pytest.raises(UserValidationError):
        database.create_user("   ", "blank@example.com", Role.USER)


def test_count_users_by_role(database: Database) -> None:
    database.create_user("Admin", "admin@example.com", Role.ADMIN)
    database.create_user("User", "user@example.com", Role.USER)
    database.create_user("Guest", "guest@example.com", Role.GUEST)

    assert database.count_users() == 3
    assert database.count_users(role=Role.ADMIN) == 1
    assert database.count_users(exclude_role=Role.GUEST) == 2


def test_update_changes_only_supplied_fields(database: Database) -> None:
    user = database.create_user("Grace", "grace@example.com", Role.USER)

    updated = database.update_user(user.id, role=Role.ADMIN)

    assert updated is not None
    assert updated.role is Role.ADMIN
    assert updated.name == "Grace"
    assert updated.email == "grace@example.com"
    assert updated.created_at == user.created_at


def test_update_to_taken_email_is_rejected(database: Database) -> None:
    database.create_user("Taken", "taken@example.com", Role.USER)
    other = database.create_user("Other", "other@example.com", Role.USER)

    with pytest.raises(DuplicateEmailError):
        database.update_user(other.id, email="taken@example.com")

    assert database.get_user(other.id).email == "other@example.com"


def test_update_and_delete_unknown_ids_return_none(database: Database) -> None:
    missing = "0" * 24
    assert database.update_user(missing, name="Nobody") is None
    assert database.delete_user(missing) is None
    assert database.get_user("not-an-id") is None


def test_delete_returns_last_known_state(database: Database) -> None:
    user = database.create_user("Linus", "linus@example.com", Role.GUEST)

    deleted = database.delete_user(user.id)

    assert deleted == user
    assert database.get_user(user.id) is None
    assert database.count_users() == 0


def test_is_connected_reports_store_state(database: Database, monkeypatch: pytest.MonkeyPatch) -> None:
    assert database.is_connected() is True

    def _refuse(*_args, **_kwargs):
        raise sqlite3.OperationalError("unable to open database file")

    monkeypatch.setattr(database, "_connect", _refuse)
    assert database.is_connected() is False
    with pytest.raises(StoreError, match="unable to open database file"):
        database.list_users()


def test_uninitialised_store_is_disconnected(tmp_path: Path) -> None:
    database = Database(tmp_path / "nested" / "empty.sqlite3")
    assert database.is_connected() is False
    with pytest.raises(StoreError):
        database.count_users()
