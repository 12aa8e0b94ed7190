"""SQLite-backed persistence for user records."""
from __future__ import annotations

import logging
import re
import secrets
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional, Protocol

from .models import ROLE_VALUES, Role, User

logger = logging.getLogger("usermanager.database")

_USER_ID_PATTERN = re.compile(r"^[0-9a-f]{24}$")


class StoreError(RuntimeError):
    """The store could not be reached or a query failed unexpectedly."""


class UserValidationError(ValueError):
    """The store rejected the values of a user record."""


class DuplicateEmailError(UserValidationError):
    def __init__(self) -> None:
        super().__init__("Email already exists")


class CapacityExceededError(UserValidationError):
    def __init__(self, max_users: int) -> None:
        super().__init__(f"Maximum users limit ({max_users}) reached")
        self.max_users = max_users


class UserStore(Protocol):
    """Operations the HTTP layer needs from a user store."""

    def is_connected(self) -> bool: ...

    def list_users(self) -> List[User]: ...

    def get_user(self, user_id: str) -> Optional[User]: ...

    def get_user_by_email(self, email: str) -> Optional[User]: ...

    def count_users(
        self,
        *,
        role: Optional[Role] = None,
        exclude_role: Optional[Role] = None,
    ) -> int: ...

    def create_user(
        self,
        name: str,
        email: str,
        role: Role,
        *,
        max_users: Optional[int] = None,
    ) -> User: ...

    def update_user(
        self,
        user_id: str,
        *,
        name: Optional[str] = None,
        email: Optional[str] = None,
        role: Optional[Role] = None,
    ) -> Optional[User]: ...

    def delete_user(self, user_id: str) -> Optional[User]: ...


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(value: datetime) -> str:
    # Fixed-width so that lexical order matches chronological order.
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _generate_user_id() -> str:
    return secrets.token_hex(12)


def is_valid_user_id(user_id: str) -> bool:
    return bool(_USER_ID_PATTERN.match(user_id))


def _normalize_name(name: str) -> str:
    normalized = name.strip()
    if not normalized:
        raise UserValidationError("User validation failed: name: Name must not be empty")
    return normalized


def _normalize_email(email: str) -> str:
    normalized = email.strip().lower()
    if not normalized:
        raise UserValidationError("User validation failed: email: Email must not be empty")
    return normalized


def _integrity_error(exc: sqlite3.IntegrityError) -> UserValidationError:
    message = str(exc)
    if "UNIQUE" in message and "email" in message:
        return DuplicateEmailError()
    return UserValidationError(f"User validation failed: {message}")


class Database:
    """Simple wrapper around SQLite for persisting user records."""

    def __init__(self, path: Path) -> None:
        _ensure_directory(path)
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self, *, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        """Yield a connection inside a transaction, translating SQLite errors."""

        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            raise StoreError(f"Unable to open user store at {self._path}: {exc}") from exc

        try:
            with conn:
                if immediate:
                    conn.execute("BEGIN IMMEDIATE")
                yield conn
        except sqlite3.IntegrityError as exc:
            raise _integrity_error(exc) from exc
        except sqlite3.Error as exc:
            raise StoreError(str(exc)) from exc
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create the required tables if they do not already exist."""

        roles = ", ".join(f"'{value}'" for value in ROLE_VALUES)
        with self._transaction() as conn:
            conn.executescript(
                f"""
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL CHECK (length(trim(name)) > 0),
                    email TEXT NOT NULL UNIQUE,
                    role TEXT NOT NULL CHECK (role IN ({roles})),
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_users_created_at ON users(created_at);
                CREATE INDEX IF NOT EXISTS idx_users_role ON users(role);
                """
            )
        logger.debug("User store initialised at %s", self._path)

    def is_connected(self) -> bool:
        """Return ``True`` when the store answers a trivial query."""

        try:
            conn = self._connect()
        except sqlite3.Error:
            return False
        try:
            conn.execute("SELECT 1 FROM users LIMIT 1").fetchall()
        except sqlite3.Error:
            return False
        finally:
            conn.close()
        return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def list_users(self) -> List[User]:
        """Return every user, most recently created first."""

        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM users ORDER BY created_at DESC, rowid DESC"
            ).fetchall()
        return [self._row_to_user(row) for row in rows]

    def get_user(self, user_id: str) -> Optional[User]:
        if not is_valid_user_id(user_id):
            return None
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE email = ?",
                (email.strip().lower(),),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def count_users(
        self,
        *,
        role: Optional[Role] = None,
        exclude_role: Optional[Role] = None,
    ) -> int:
        """Count users, optionally only those with (or without) a role."""

        clauses: List[str] = []
        params: List[str] = []
        if role is not None:
            clauses.append("role = ?")
            params.append(Role(role).value)
        if exclude_role is not None:
            clauses.append("role != ?")
            params.append(Role(exclude_role).value)

        query = "SELECT COUNT(*) FROM users"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)

        with self._transaction() as conn:
            (count,) = conn.execute(query, params).fetchone()
        return int(count)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def create_user(
        self,
        name: str,
        email: str,
        role: Role,
        *,
        max_users: Optional[int] = None,
    ) -> User:
        """Insert a new user.

        When ``max_users`` is given the capacity check and the insert share
        one immediate transaction, so concurrent writers cannot push the
        table past the cap. Email uniqueness is a table constraint.
        """

        user = User(
            id=_generate_user_id(),
            name=_normalize_name(name),
            email=_normalize_email(email),
            role=Role(role),
            created_at=_current_timestamp(),
        )

        with self._transaction(immediate=True) as conn:
            if max_users is not None:
                (count,) = conn.execute("SELECT COUNT(*) FROM users").fetchone()
                if count >= max_users:
                    raise CapacityExceededError(max_users)
            conn.execute(
                """
                INSERT INTO users (id, name, email, role, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    user.id,
                    user.name,
                    user.email,
                    user.role.value,
                    _serialize_datetime(user.created_at),
                ),
            )

        logger.info("Created user %s <%s> with role %s", user.id, user.email, user.role.value)
        return user

    def update_user(
        self,
        user_id: str,
        *,
        name: Optional[str] = None,
        email: Optional[str] = None,
        role: Optional[Role] = None,
    ) -> Optional[User]:
        """Change the supplied fields of a user; ``None`` leaves a field as is.

        Returns ``None`` if no user has the identifier.
        """

        if not is_valid_user_id(user_id):
            return None

        updates: List[str] = []
        params: List[str] = []
        if name is not None:
            updates.append("name = ?")
            params.append(_normalize_name(name))
        if email is not None:
            updates.append("email = ?")
            params.append(_normalize_email(email))
        if role is not None:
            updates.append("role = ?")
            params.append(Role(role).value)

        with self._transaction() as conn:
            if updates:
                cursor = conn.execute(
                    f"UPDATE users SET {', '.join(updates)} WHERE id = ?",
                    (*params, user_id),
                )
                if cursor.rowcount == 0:
                    return None
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()

        if row is None:
            return None
        return self._row_to_user(row)

    def delete_user(self, user_id: str) -> Optional[User]:
        """Remove a user and return its last stored state."""

        if not is_valid_user_id(user_id):
            return None

        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
            if row is None:
                return None
            conn.execute("DELETE FROM users WHERE id = ?", (user_id,))

        user = self._row_to_user(row)
        logger.info("Deleted user %s <%s>", user.id, user.email)
        return user

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            name=row["name"],
            email=row["email"],
            role=Role(row["role"]),
            created_at=_parse_datetime(row["created_at"]),
        )


__all__ = [
    "CapacityExceededError",
    "Database",
    "DuplicateEmailError",
    "StoreError",
    "UserStore",
    "UserValidationError",
    "is_valid_user_id",
]
