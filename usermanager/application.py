"""Application factory that wires configuration, storage and the API."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from fastapi import FastAPI

from .api import create_app
from .config import Settings, load_settings
from .database import Database

logger = logging.getLogger("usermanager.application")


def create_application(
    *,
    settings: Optional[Settings] = None,
    config_path: Optional[Path] = None,
) -> FastAPI:
    """Create the ASGI application from the process environment."""

    if settings is None:
        settings = load_settings(config_path=config_path)

    logger.info("Starting %s...", settings.app_name)
    logger.info("User store: %s", settings.database_path)
    logger.info("Max users: %s", settings.max_users)

    database = Database(settings.database_path)
    database.initialize()

    return create_app(settings=settings, store=database)


__all__ = ["create_application"]
