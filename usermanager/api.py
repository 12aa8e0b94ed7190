"""FastAPI application that exposes the user management endpoints."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import Settings
from .database import (
    Database,
    StoreError,
    UserStore,
    UserValidationError,
)
from .models import Role, User
from .security import APIKeyAuth

logger = logging.getLogger("usermanager.api")

ROUTE_NOT_FOUND = "Route not found"
USER_NOT_FOUND = "User not found"
GENERIC_ERROR = "Something went wrong!"


class CreateUserRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    email: str = Field(..., min_length=1, max_length=320)
    role: Optional[Role] = None

    @field_validator("name", "email")
    @classmethod
    def _strip(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("must not be empty")
        return stripped


class UpdateUserRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    email: Optional[str] = Field(default=None, min_length=1, max_length=320)
    role: Optional[Role] = None

    @field_validator("name", "email")
    @classmethod
    def _strip(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        stripped = value.strip()
        if not stripped:
            raise ValueError("must not be empty")
        return stripped


class UserResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    email: str
    role: Role
    created_at: datetime = Field(alias="createdAt")


class DeleteUserResponse(BaseModel):
    message: str
    user: UserResponse


def user_to_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        name=user.name,
        email=user.email,
        role=user.role,
        created_at=user.created_at,
    )


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _format_validation_errors(exc: RequestValidationError) -> str:
    parts: List[str] = []
    for error in exc.errors():
        location = ".".join(
            str(item) for item in error.get("loc", ()) if item != "body" and not isinstance(item, int)
        )
        message = error.get("msg", "Invalid value")
        parts.append(f"{location}: {message}" if location else message)
    return "User validation failed: " + "; ".join(parts)


@contextmanager
def _store_errors() -> Iterator[None]:
    """Translate store failures into HTTP errors."""

    try:
        yield
    except UserValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except StoreError as exc:
        logger.error("User store operation failed: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(exc),
        ) from exc


def create_app(
    *,
    settings: Settings | None = None,
    store: UserStore | None = None,
    auth: APIKeyAuth | None = None,
) -> FastAPI:
    if settings is None:
        settings = Settings()

    if store is None:
        database = Database(settings.database_path)
        database.initialize()
        store = database

    if auth is None:
        auth = APIKeyAuth(settings.api_key)

    app = FastAPI(
        title=settings.app_name,
        description="CRUD API for managing user records",
        version=settings.version,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_allowed_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.settings = settings
    app.state.store = store

    @app.middleware("http")
    async def strip_trailing_slash(request: Request, call_next):
        path = request.scope["path"]
        if len(path) > 1 and path.endswith("/"):
            request.scope["path"] = path.rstrip("/") or "/"
        return await call_next(request)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": _format_validation_errors(exc)},
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error while serving %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": GENERIC_ERROR},
        )

    def get_store() -> UserStore:
        return store

    def get_existing_user(user_id: str, db: UserStore = Depends(get_store)) -> User:
        with _store_errors():
            user = db.get_user(user_id)
        if user is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=USER_NOT_FOUND)
        return user

    require_api_key = [Depends(auth)]

    @app.api_route("/health", methods=["GET", "HEAD"])
    async def healthcheck(db: UserStore = Depends(get_store)) -> Dict[str, str]:
        return {
            "status": "healthy",
            "timestamp": _utc_timestamp(),
            "database": "connected" if db.is_connected() else "disconnected",
        }

    @app.get("/api/config")
    async def read_config() -> Dict[str, object]:
        return {
            "appName": settings.app_name,
            "maxUsers": settings.max_users,
            "defaultRole": settings.default_role.value,
            "environment": settings.environment,
            "version": settings.version,
        }

    @app.get("/api/users", response_model=List[UserResponse])
    async def list_users(db: UserStore = Depends(get_store)) -> List[UserResponse]:
        with _store_errors():
            users = db.list_users()
        return [user_to_response(user) for user in users]

    @app.get("/api/users/{user_id}", response_model=UserResponse)
    async def read_user(user: User = Depends(get_existing_user)) -> UserResponse:
        return user_to_response(user)

    @app.post(
        "/api/users",
        response_model=UserResponse,
        status_code=status.HTTP_201_CREATED,
        dependencies=require_api_key,
    )
    async def create_user(
        payload: CreateUserRequest,
        db: UserStore = Depends(get_store),
    ) -> UserResponse:
        with _store_errors():
            if db.count_users() >= settings.max_users:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f"Maximum users limit ({settings.max_users}) reached",
                )
            if db.get_user_by_email(payload.email) is not None:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Email already exists",
                )
            user = db.create_user(
                payload.name,
                payload.email,
                payload.role or settings.default_role,
                max_users=settings.max_users,
            )
        return user_to_response(user)

    @app.put("/api/users/{user_id}", response_model=UserResponse, dependencies=require_api_key)
    async def update_user(
        user_id: str,
        payload: Optional[UpdateUserRequest] = None,
        db: UserStore = Depends(get_store),
    ) -> UserResponse:
        # A missing body changes nothing.
        payload = payload or UpdateUserRequest()
        with _store_errors():
            user = db.update_user(
                user_id,
                name=payload.name,
                email=payload.email,
                role=payload.role,
            )
        if user is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=USER_NOT_FOUND)
        logger.info("Updated user %s", user.id)
        return user_to_response(user)

    @app.delete(
        "/api/users/{user_id}",
        response_model=DeleteUserResponse,
        dependencies=require_api_key,
    )
    async def delete_user(user_id: str, db: UserStore = Depends(get_store)) -> DeleteUserResponse:
        with _store_errors():
            user = db.delete_user(user_id)
        if user is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=USER_NOT_FOUND)
        return DeleteUserResponse(message="User deleted successfully", user=user_to_response(user))

    @app.get("/api/stats")
    async def read_stats(db: UserStore = Depends(get_store)) -> Dict[str, int]:
        # Three independent counts; no snapshot across them.
        with _store_errors():
            total = db.count_users()
            admins = db.count_users(role=Role.ADMIN)
            active = db.count_users(exclude_role=Role.GUEST)
        return {
            "totalUsers": total,
            "adminCount": admins,
            "activeUsers": active,
        }

    @app.api_route(
        "/{path:path}",
        methods=["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"],
        include_in_schema=False,
    )
    async def route_not_found(path: str) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"error": ROUTE_NOT_FOUND})

    return app


__all__ = [
    "CreateUserRequest",
    "DeleteUserResponse",
    "UpdateUserRequest",
    "UserResponse",
    "create_app",
    "user_to_response",
]
