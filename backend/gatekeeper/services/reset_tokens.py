"""Persistence for password reset tokens."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from gatekeeper.core.config import get_settings
from gatekeeper.db.base import as_utc, utcnow
from gatekeeper.models import PasswordResetToken

logger = logging.getLogger(__name__)


def _store_window() -> timedelta:
    return timedelta(hours=get_settings().reset_token_store_window_hours)


async def save_reset_token(session: AsyncSession, user_id: int, token: str) -> PasswordResetToken:
    """Replace any token the user already holds with ``token``."""

    # Delete-then-insert; concurrent requests for one user race and the last writer wins.
    await session.execute(delete(PasswordResetToken).where(PasswordResetToken.user_id == user_id))
    record = PasswordResetToken(user_id=user_id, token=token, created_at=utcnow())
    session.add(record)
    await session.flush()
    return record


async def delete_reset_token(session: AsyncSession, token: str) -> None:
    await session.execute(delete(PasswordResetToken).where(PasswordResetToken.token == token))
    await session.flush()


async def find_reset_token(
    session: AsyncSession, token: str, now: datetime | None = None
) -> PasswordResetToken | None:
    """Return the live record for ``token``; records past the store window are deleted."""

    result = await session.execute(select(PasswordResetToken).where(PasswordResetToken.token == token))
    record = result.scalar_one_or_none()
    if record is None:
        return None

    age = (now or utcnow()) - as_utc(record.created_at)
    if age > _store_window():
        logger.info("Reset token for user %s expired in store after %s; deleting", record.user_id, age)
        await delete_reset_token(session, token)
        return None
    return record


async def purge_expired_reset_tokens(session: AsyncSession, now: datetime | None = None) -> int:
    cutoff = (now or utcnow()) - _store_window()
    result = await session.execute(
        delete(PasswordResetToken)
        .where(PasswordResetToken.created_at < cutoff)
        .execution_options(synchronize_session=False)
    )
    await session.flush()
    removed = result.rowcount or 0
    if removed:
        logger.info("Purged %d expired reset token(s)", removed)
    return removed
