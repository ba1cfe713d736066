"""User service functions: credential storage, lookups, and user CRUD."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from gatekeeper.core.exceptions import DuplicateEmail, RoleNotFound, UserNotFound
from gatekeeper.core.security import PasswordHasher, SecretManager
from gatekeeper.db.base import utcnow
from gatekeeper.models import OAuthToken, Role, User, UserProfile
from gatekeeper.schemas.user import UserCreate, UserUpdate

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


@dataclass(slots=True)
class ProviderTokens:
    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None


async def find_user_by_email(session: AsyncSession, email: str) -> User | None:
    """Return the active user with ``email``; store failures read as "not found"."""

    try:
        result = await session.execute(
            select(User).where(func.lower(User.email) == normalize_email(email), User.not_deleted())
        )
        return result.scalars().first()
    except SQLAlchemyError:
        logger.exception("Lookup by email failed; treating as not found")
        return None


async def find_user_by_id(session: AsyncSession, user_id: int) -> User | None:
    try:
        result = await session.execute(select(User).where(User.id == user_id, User.not_deleted()))
        return result.scalar_one_or_none()
    except SQLAlchemyError:
        logger.exception("Lookup of user %s failed; treating as not found", user_id)
        return None


async def find_user_by_google_id(session: AsyncSession, google_id: str) -> User | None:
    result = await session.execute(select(User).where(User.google_id == google_id, User.not_deleted()))
    return result.scalar_one_or_none()


async def email_taken(session: AsyncSession, email: str, exclude_id: int | None = None) -> bool:
    query = select(User.id).where(func.lower(User.email) == normalize_email(email), User.not_deleted())
    if exclude_id is not None:
        query = query.where(User.id != exclude_id)
    result = await session.execute(query.limit(1))
    return result.first() is not None


async def users_exist(session: AsyncSession) -> bool:
    result = await session.execute(select(User.id).where(User.not_deleted()).limit(1))
    return result.first() is not None


async def create_user(
    session: AsyncSession,
    email: str,
    password_hash: str | None = None,
    *,
    google_id: str | None = None,
    image: str | None = None,
    role_id: int | None = None,
    profile: dict[str, str | None] | None = None,
) -> User:
    """Insert a user and, when given, its profile record in the same flush."""

    if await email_taken(session, email):
        raise DuplicateEmail()

    user = User(
        email=normalize_email(email),
        password_hash=password_hash,
        google_id=google_id,
        image=image,
        role_id=role_id,
    )
    if profile and any(value is not None for value in profile.values()):
        user.profile = UserProfile(**profile)
    session.add(user)
    try:
        await session.flush()
    except IntegrityError as exc:
        # A concurrent insert won the race past the pre-check.
        await session.rollback()
        raise DuplicateEmail() from exc
    await session.refresh(user, ["profile", "role"])
    return user


async def update_user_password(session: AsyncSession, user_id: int, password_hash: str) -> User:
    user = await find_user_by_id(session, user_id)
    if not user:
        raise UserNotFound()
    user.password_hash = password_hash
    user.updated_at = utcnow()
    await session.flush()
    return user


async def upsert_oauth_tokens(
    session: AsyncSession,
    user_id: int,
    provider: str,
    tokens: ProviderTokens,
    secret_manager: SecretManager,
) -> OAuthToken:
    """Store provider tokens, overwriting the existing row for (user, provider)."""

    result = await session.execute(
        select(OAuthToken).where(OAuthToken.user_id == user_id, OAuthToken.provider == provider)
    )
    record = result.scalar_one_or_none()
    if record is None:
        record = OAuthToken(
            user_id=user_id,
            provider=provider,
            access_token_encrypted=secret_manager.encrypt(tokens.access_token),
            refresh_token_encrypted=secret_manager.encrypt(tokens.refresh_token) if tokens.refresh_token else None,
            expires_at=tokens.expires_at,
        )
        session.add(record)
    else:
        record.access_token_encrypted = secret_manager.encrypt(tokens.access_token)
        # Providers only send a refresh token on first consent; keep the old one otherwise.
        if tokens.refresh_token:
            record.refresh_token_encrypted = secret_manager.encrypt(tokens.refresh_token)
        if tokens.expires_at is not None:
            record.expires_at = tokens.expires_at
        record.updated_at = utcnow()
    await session.flush()
    return record


async def _ensure_role(session: AsyncSession, role_id: int | None) -> None:
    if role_id is None:
        return
    result = await session.execute(select(Role.id).where(Role.id == role_id, Role.not_deleted()))
    if result.first() is None:
        raise RoleNotFound()


async def create_managed_user(session: AsyncSession, data: UserCreate) -> User:
    """Create a user on behalf of an administrator."""

    await _ensure_role(session, data.role_id)
    return await create_user(
        session,
        data.email,
        PasswordHasher.hash(data.password),
        google_id=data.google_id,
        image=str(data.image) if data.image else None,
        role_id=data.role_id,
        profile=data.model_dump(include={"name", "last_name", "phone"}),
    )


async def update_user(session: AsyncSession, user_id: int, data: UserUpdate) -> User:
    user = await find_user_by_id(session, user_id)
    if not user:
        raise UserNotFound()

    fields = data.model_dump(exclude_unset=True)
    if "email" in fields and data.email is not None:
        if await email_taken(session, data.email, exclude_id=user.id):
            raise DuplicateEmail()
        user.email = normalize_email(data.email)
    if data.password is not None:
        user.password_hash = PasswordHasher.hash(data.password)
    if "role_id" in fields:
        await _ensure_role(session, data.role_id)
        user.role_id = data.role_id
    if "image" in fields:
        user.image = str(data.image) if data.image else None

    profile_fields = {key: fields[key] for key in ("name", "last_name", "phone") if key in fields}
    if profile_fields:
        if user.profile is None:
            user.profile = UserProfile(**profile_fields)
        else:
            for key, value in profile_fields.items():
                setattr(user.profile, key, value)

    user.updated_at = utcnow()
    await session.flush()
    await session.refresh(user, ["profile", "role"])
    return user


async def soft_delete_user(session: AsyncSession, user_id: int) -> None:
    user = await find_user_by_id(session, user_id)
    if not user:
        raise UserNotFound()
    user.soft_delete()
    await session.flush()


@dataclass(slots=True)
class UserFilters:
    role_id: int | None = None
    has_profile: bool | None = None
    search: str | None = None


@dataclass(slots=True)
class Page:
    previous_page: int | None
    current_page: int
    next_page: int | None
    total: int
    total_pages: int
    limit: int
    data: list[User]


def paginate(rows: list[User], count: int, page_size: int, page: int) -> Page:
    page = max(page, 1)
    total_pages = math.ceil(count / page_size) if page_size else 0
    if page > total_pages:
        return Page(previous_page=None, current_page=1, next_page=None, total=0, total_pages=0, limit=0, data=[])

    offset = (page - 1) * page_size
    limit = count - offset if page == total_pages else page_size
    return Page(
        previous_page=page - 1 if page > 1 else None,
        current_page=page,
        next_page=page + 1 if page < total_pages else None,
        total=count,
        total_pages=total_pages,
        limit=limit,
        data=rows,
    )


async def list_users(session: AsyncSession, filters: UserFilters, page: int = 1, page_size: int = 20) -> Page:
    query = select(User).where(User.not_deleted())
    if filters.role_id is not None:
        query = query.where(User.role_id == filters.role_id)
    if filters.has_profile is True:
        query = query.where(User.profile.has())
    elif filters.has_profile is False:
        query = query.where(~User.profile.has())
    if filters.search:
        pattern = f"%{filters.search.strip().lower()}%"
        query = query.where(
            or_(
                func.lower(User.email).like(pattern),
                User.profile.has(func.lower(UserProfile.name).like(pattern)),
                User.profile.has(func.lower(UserProfile.last_name).like(pattern)),
            )
        )

    count_result = await session.execute(select(func.count()).select_from(query.subquery()))
    count = count_result.scalar_one()

    page = max(page, 1)
    result = await session.execute(query.order_by(User.id).offset((page - 1) * page_size).limit(page_size))
    return paginate(list(result.scalars().all()), count, page_size, page)


async def user_stats(session: AsyncSession) -> dict[str, int]:
    result = await session.execute(
        select(
            func.count(User.id),
            func.count(User.email_verified_at),
            func.count(User.google_id),
            func.count(User.password_hash),
            func.count(func.distinct(User.role_id)),
        ).where(User.not_deleted())
    )
    total, verified, google, with_password, roles = result.one()
    return {
        "total_users": total,
        "verified_users": verified,
        "unverified_users": total - verified,
        "google_users": google,
        "password_users": with_password,
        "total_roles": roles,
    }
