"""Domain models for the user management service."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    """Roles a user record may carry."""

    ADMIN = "admin"
    USER = "user"
    GUEST = "guest"


ROLE_VALUES = tuple(role.value for role in Role)


@dataclass(frozen=True)
class User:
    """Represents a user record stored in the user database."""

    id: str
    name: str
    email: str
    role: Role
    created_at: datetime


__all__ = ["ROLE_VALUES", "Role", "User"]
