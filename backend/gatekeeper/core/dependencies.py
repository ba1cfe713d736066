"""Reusable dependencies for FastAPI routes."""
from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from gatekeeper.core.config import Settings
from gatekeeper.core.exceptions import Forbidden, Unauthorized
from gatekeeper.core.security import OAuthStateSigner, RecoveryTokenService, SecretManager, SessionTokenService
from gatekeeper.db.session import Database
from gatekeeper.services.notifications import NotificationProvider
from gatekeeper.services.oauth import GoogleOAuthClient
from gatekeeper.services.permissions import PermissionResolver, ResolvedAccess, has_role, is_authorized

bearer_scheme = HTTPBearer(auto_error=False)


def get_database(request: Request) -> Database:
    return request.app.state.database


async def get_db(database: Database = Depends(get_database)) -> AsyncIterator[AsyncSession]:
    async with database.session() as session:
        yield session


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_session_tokens(settings: Settings = Depends(get_app_settings)) -> SessionTokenService:
    return SessionTokenService(settings=settings)


def get_recovery_tokens(settings: Settings = Depends(get_app_settings)) -> RecoveryTokenService:
    return RecoveryTokenService(settings=settings)


def get_secret_manager(settings: Settings = Depends(get_app_settings)) -> SecretManager:
    return SecretManager(settings=settings)


def get_oauth_state_signer(settings: Settings = Depends(get_app_settings)) -> OAuthStateSigner:
    return OAuthStateSigner(settings=settings)


def get_notifier(request: Request) -> NotificationProvider:
    return request.app.state.notifier


def get_oauth_client(request: Request) -> GoogleOAuthClient:
    return request.app.state.oauth_client


def get_permission_resolver(database: Database = Depends(get_database)) -> PermissionResolver:
    return PermissionResolver(database)


async def get_current_identity(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    tokens: SessionTokenService = Depends(get_session_tokens),
    resolver: PermissionResolver = Depends(get_permission_resolver),
) -> ResolvedAccess:
    """Authenticate the bearer token and load the caller's role and permissions."""

    if credentials is None or credentials.scheme.lower() != "bearer" or not credentials.credentials:
        raise Unauthorized("Authentication token not found")

    # Raises ExpiredToken or InvalidToken; tokens without an expiry claim pass.
    claims = tokens.verify(credentials.credentials)
    access = await resolver.resolve(claims.user_id)
    if access is None:
        raise Forbidden("User does not exist")
    return access


def require_permission(resource: str, action: str) -> Callable[..., Awaitable[ResolvedAccess]]:
    async def _check(access: ResolvedAccess = Depends(get_current_identity)) -> ResolvedAccess:
        if not is_authorized(access, resource, action):
            raise Forbidden(f"Missing permission {resource}.{action}")
        return access

    return _check


def require_role(role_name: str) -> Callable[..., Awaitable[ResolvedAccess]]:
    async def _check(access: ResolvedAccess = Depends(get_current_identity)) -> ResolvedAccess:
        if not has_role(access, role_name):
            raise Forbidden(f"Requires role {role_name}")
        return access

    return _check
