"""Login, registration, and Google sign-in flows."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from gatekeeper.core.config import Settings, get_settings
from gatekeeper.core.exceptions import DuplicateEmail, InvalidCredentials, ValidationError
from gatekeeper.core.security import PasswordHasher, SecretManager, SessionTokenService, generate_random_password
from gatekeeper.db.base import utcnow
from gatekeeper.models import User
from gatekeeper.schemas.auth import RegisterRequest
from gatekeeper.services.notifications import NotificationMessage, NotificationProvider, notify
from gatekeeper.services.oauth import OAuthProfile
from gatekeeper.services.rbac import ADMIN_ROLE_NAME, get_role_by_name
from gatekeeper.services.users import (
    create_user,
    find_user_by_email,
    find_user_by_google_id,
    upsert_oauth_tokens,
    users_exist,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AuthResult:
    user: User
    token: str
    generated_password: str | None = None


async def _initial_role_id(session: AsyncSession) -> int | None:
    """The first account created becomes the administrator."""

    if await users_exist(session):
        return None
    admin = await get_role_by_name(session, ADMIN_ROLE_NAME)
    return admin.id if admin else None


async def login(session: AsyncSession, email: str, password: str, tokens: SessionTokenService) -> AuthResult:
    user = await find_user_by_email(session, email)
    # One error for every failure so callers cannot probe which emails exist.
    if user is None or not user.password_hash or not PasswordHasher.verify(password, user.password_hash):
        logger.info("Failed login attempt for %s", email)
        raise InvalidCredentials()
    return AuthResult(user=user, token=tokens.issue(user))


async def register(
    session: AsyncSession, data: RegisterRequest, tokens: SessionTokenService, settings: Settings | None = None
) -> AuthResult:
    settings = settings or get_settings()
    if await find_user_by_email(session, data.email):
        raise DuplicateEmail()

    generated_password = None
    if data.auto_generate_password:
        generated_password = generate_random_password(settings.generated_password_length)
        password = generated_password
    elif data.password:
        password = data.password
    else:
        raise ValidationError("A password is required unless one is generated")

    user = await create_user(
        session,
        data.email,
        PasswordHasher.hash(password),
        google_id=data.google_id,
        image=str(data.image) if data.image else None,
        role_id=await _initial_role_id(session),
        profile=data.model_dump(include={"name", "last_name", "phone"}),
    )
    logger.info("Registered user %s (id=%s)", user.email, user.id)
    return AuthResult(user=user, token=tokens.issue(user), generated_password=generated_password)


async def send_welcome_email(
    provider: NotificationProvider, email: str, password: str, settings: Settings | None = None
) -> None:
    settings = settings or get_settings()
    body = "\n".join(
        [
            "Your account has been created.",
            "",
            "Sign-in details:",
            f"- Email: {email}",
            f"- Temporary password: {password}",
            "",
            "Please change this password after your first sign-in.",
        ]
    )
    await notify(
        provider,
        NotificationMessage(
            recipient=email,
            subject="Welcome",
            body=body,
            action_title="Sign in",
            action_url=f"{settings.frontend_url}/login",
        ),
    )


async def oauth_login(
    session: AsyncSession,
    profile: OAuthProfile,
    provider: str,
    tokens: SessionTokenService,
    secret_manager: SecretManager,
) -> AuthResult:
    """Link or create the account for a verified provider identity."""

    # An already linked account wins over an email match.
    user = await find_user_by_google_id(session, profile.subject) or await find_user_by_email(session, profile.email)
    if user is not None:
        user.google_id = profile.subject
        user.image = profile.image or user.image
        if profile.email_verified and user.email_verified_at is None:
            user.email_verified_at = utcnow()
        user.updated_at = utcnow()
        await session.flush()
        logger.info("Google sign-in linked to existing user %s", user.id)
    else:
        user = await create_user(
            session,
            profile.email,
            None,
            google_id=profile.subject,
            image=profile.image,
            role_id=await _initial_role_id(session),
        )
        if profile.email_verified:
            user.email_verified_at = utcnow()
            await session.flush()
        logger.info("Created user %s from Google sign-in", user.id)

    token = tokens.issue(user)
    await upsert_oauth_tokens(session, user.id, provider, profile.tokens, secret_manager)
    return AuthResult(user=user, token=token)


def logout() -> None:
    """Session tokens are stateless; the client discards its copy."""
