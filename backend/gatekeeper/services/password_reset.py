"""Password reset lifecycle: request, verify, and consume recovery tokens.

Each step commits its own writes. A store-side expiry deletes the record
even though verification then fails, so the deletion is committed before
the error is raised.
"""
from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from gatekeeper.core.config import Settings, get_settings
from gatekeeper.core.exceptions import EmailNotFound, InvalidOrExpiredToken, UserNotFound
from gatekeeper.core.security import PasswordHasher, RecoveryTokenService
from gatekeeper.services.notifications import ACTION_MARKER, NotificationMessage, NotificationProvider, notify
from gatekeeper.services.reset_tokens import (
    delete_reset_token,
    find_reset_token,
    purge_expired_reset_tokens,
    save_reset_token,
)
from gatekeeper.services.users import find_user_by_email, update_user_password

logger = logging.getLogger(__name__)


def reset_link(token: str, settings: Settings | None = None) -> str:
    return f"{(settings or get_settings()).frontend_url}/reset-password/{token}"


async def request_reset(
    session: AsyncSession,
    email: str,
    recovery_tokens: RecoveryTokenService,
    provider: NotificationProvider,
    settings: Settings | None = None,
) -> str:
    """Issue a recovery token for ``email`` and mail the reset link. Returns the token."""

    user = await find_user_by_email(session, email)
    if user is None:
        raise EmailNotFound()

    token = recovery_tokens.issue(user.email)
    await save_reset_token(session, user.id, token)
    await purge_expired_reset_tokens(session)
    await session.commit()
    logger.info("Issued password reset token for user %s", user.id)

    link = reset_link(token, settings)
    body = "\n".join(
        [
            "We received a request to reset your password.",
            "",
            "Use the button below to choose a new one.",
            "",
            ACTION_MARKER,
            "",
            "If the button does not work, open this link:",
            link,
            "",
            "If you did not request this change you can ignore this email.",
        ]
    )
    await notify(
        provider,
        NotificationMessage(
            recipient=user.email,
            subject="Reset your password",
            body=body,
            action_title="Reset password",
            action_url=link,
        ),
    )
    return token


async def verify(session: AsyncSession, token: str, recovery_tokens: RecoveryTokenService) -> str:
    """Return the email the token was issued for, or raise."""

    recovery_tokens.verify(token)

    record = await find_reset_token(session, token)
    # find_reset_token may have deleted an expired record.
    await session.commit()
    if record is None:
        raise InvalidOrExpiredToken("Invalid or already used token")

    user = await find_user_by_email(session, record.user.email)
    if user is None:
        raise UserNotFound()
    return user.email


async def reset_password(
    session: AsyncSession, token: str, new_password: str, recovery_tokens: RecoveryTokenService
) -> None:
    email = await verify(session, token, recovery_tokens)
    user = await find_user_by_email(session, email)
    if user is None:
        raise UserNotFound()

    await update_user_password(session, user.id, PasswordHasher.hash(new_password))
    await delete_reset_token(session, token)
    await session.commit()
    logger.info("Password reset completed for user %s", user.id)
