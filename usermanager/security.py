"""Security helpers for the user management API."""
from __future__ import annotations

import secrets

from fastapi import HTTPException, Request, status
from fastapi.security import APIKeyHeader

API_KEY_HEADER = "x-api-key"


class APIKeyAuth:
    """Static API key authentication using constant-time comparisons."""

    def __init__(self, api_key: str):
        if not api_key or not api_key.strip():
            raise ValueError("An API key must be configured")
        self._api_key = api_key.encode("utf-8")
        self._header = APIKeyHeader(name=API_KEY_HEADER, auto_error=False)

    async def __call__(self, request: Request) -> None:
        provided = await self._header(request)
        if provided and secrets.compare_digest(provided.encode("utf-8"), self._api_key):
            return None

        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized: Invalid API Key",
        )


__all__ = ["API_KEY_HEADER", "APIKeyAuth"]
