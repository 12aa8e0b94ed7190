"""Configuration management for the user management service."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

import yaml

from .models import ROLE_VALUES, Role

logger = logging.getLogger("usermanager.config")

CONFIG_PATH_ENV = "USER_SERVICE_CONFIG"

# Settings field name -> environment variable carrying it.
_ENV_NAMES: Dict[str, str] = {
    "database_path": "DATABASE_PATH",
    "db_password": "DB_PASSWORD",
    "api_key": "API_KEY",
    "app_name": "APP_NAME",
    "max_users": "MAX_USERS",
    "default_role": "DEFAULT_ROLE",
    "environment": "ENVIRONMENT",
    "version": "APP_VERSION",
    "host": "HOST",
    "port": "PORT",
    "cors_allowed_origins": "CORS_ALLOWED_ORIGINS",
    "log_level": "LOG_LEVEL",
}

DEFAULT_MAX_USERS = 100
DEFAULT_PORT = 3000


def resolve_database_path(value: Optional[str], base_path: Path | None = None) -> Path:
    """Resolve the on-disk path for the user database."""

    if value:
        raw = Path(value).expanduser()
        if not raw.is_absolute() and base_path is not None:
            raw = base_path / raw
        return raw.resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "users.sqlite3").resolve(strict=False)


def _positive_int(name: str, raw: object, default: int) -> int:
    try:
        value = int(str(raw).strip())
    except (TypeError, ValueError):
        logger.warning("Ignoring non-numeric %s value %r; using %s", name, raw, default)
        return default
    if value <= 0:
        logger.warning("Ignoring non-positive %s value %r; using %s", name, raw, default)
        return default
    return value


def _parse_role(raw: object) -> Role:
    candidate = str(raw).strip().lower()
    try:
        return Role(candidate)
    except ValueError as exc:
        raise ValueError(
            f"DEFAULT_ROLE must be one of {', '.join(ROLE_VALUES)} (got {raw!r})"
        ) from exc


_LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


def _parse_log_level(raw: object) -> str:
    level = str(raw).strip().upper()
    if level not in _LOG_LEVELS:
        logger.warning("Ignoring unknown log_level value %r; using INFO", raw)
        return "INFO"
    return level


def _parse_origins(raw: object) -> Tuple[str, ...]:
    if isinstance(raw, (list, tuple)):
        items = [str(item).strip() for item in raw]
    else:
        items = [item.strip() for item in str(raw).split(",")]
    origins = tuple(item for item in items if item)
    return origins or ("*",)


@dataclass(frozen=True)
class Settings:
    """Immutable process configuration, loaded once at start-up."""

    database_path: Path = field(default_factory=lambda: resolve_database_path(None))
    db_password: str = "defaultpassword"
    api_key: str = "default-api-key"
    app_name: str = "User Management System"
    max_users: int = DEFAULT_MAX_USERS
    default_role: Role = Role.USER
    environment: str = "development"
    version: str = "1.0.0"
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    cors_allowed_origins: Tuple[str, ...] = ("*",)
    log_level: str = "INFO"

    @staticmethod
    def from_mapping(data: Mapping[str, object], base_path: Path | None = None) -> "Settings":
        """Create :class:`Settings` from raw values keyed by field name.

        Missing keys fall back to the defaults; ``base_path`` anchors a
        relative ``database_path``.
        """
        unknown = set(data) - set(_ENV_NAMES)
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

        defaults = Settings()
        raw_path = data.get("database_path")
        return Settings(
            database_path=(
                resolve_database_path(str(raw_path), base_path)
                if raw_path
                else defaults.database_path
            ),
            db_password=str(data.get("db_password", defaults.db_password)),
            api_key=str(data.get("api_key", defaults.api_key)),
            app_name=str(data.get("app_name", defaults.app_name)),
            max_users=(
                _positive_int("max_users", data["max_users"], DEFAULT_MAX_USERS)
                if "max_users" in data
                else defaults.max_users
            ),
            default_role=(
                _parse_role(data["default_role"]) if "default_role" in data else defaults.default_role
            ),
            environment=str(data.get("environment", defaults.environment)),
            version=str(data.get("version", defaults.version)),
            host=str(data.get("host", defaults.host)),
            port=(
                _positive_int("port", data["port"], DEFAULT_PORT)
                if "port" in data
                else defaults.port
            ),
            cors_allowed_origins=(
                _parse_origins(data["cors_allowed_origins"])
                if "cors_allowed_origins" in data
                else defaults.cors_allowed_origins
            ),
            log_level=(
                _parse_log_level(data["log_level"]) if "log_level" in data else defaults.log_level
            ),
        )


def load_config_file(config_path: Path) -> Dict[str, object]:
    """Read settings from a YAML file such as a mounted ConfigMap."""
    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Configuration file {config_path} must contain a mapping")
    return {str(key): value for key, value in raw.items()}


def load_settings(
    environ: Optional[Mapping[str, str]] = None,
    config_path: Optional[Path] = None,
) -> Settings:
    """Load settings from an optional YAML file overlaid by environment variables."""

    env = os.environ if environ is None else environ

    if config_path is None and env.get(CONFIG_PATH_ENV):
        config_path = Path(env[CONFIG_PATH_ENV]).expanduser()

    values: Dict[str, object] = {}
    if config_path is not None:
        values.update(load_config_file(config_path))

    for name, env_name in _ENV_NAMES.items():
        raw = env.get(env_name)
        if raw is not None and raw != "":
            values[name] = raw

    # A relative path from the YAML file is anchored next to that file.
    base_path: Path | None = None
    if config_path is not None and not env.get(_ENV_NAMES["database_path"]):
        base_path = config_path.resolve(strict=False).parent

    return Settings.from_mapping(values, base_path=base_path)


__all__ = [
    "CONFIG_PATH_ENV",
    "Settings",
    "load_config_file",
    "load_settings",
    "resolve_database_path",
]
