"""Resolve a user's role and effective permissions, and check access."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gatekeeper.db.session import Database
from gatekeeper.models import STANDARD_PERMISSION_TYPE, Permission, Role, RoleHasPermission, User


@dataclass(frozen=True, slots=True)
class RoleRef:
    id: int
    name: str


@dataclass(frozen=True, slots=True)
class PermissionRef:
    id: int
    resource: str
    action: str
    type: int


@dataclass(frozen=True, slots=True)
class ResolvedAccess:
    user_id: int
    email: str
    role: RoleRef | None
    permissions: list[PermissionRef] = field(default_factory=list)

    @property
    def permission_names(self) -> list[str]:
        return [f"{permission.resource}.{permission.action}" for permission in self.permissions]


def is_authorized(access: ResolvedAccess, resource: str, action: str) -> bool:
    """Grant only on a standard-type permission matching resource and action."""

    return any(
        permission.resource == resource
        and permission.action == action
        and permission.type == STANDARD_PERMISSION_TYPE
        for permission in access.permissions
    )


def has_role(access: ResolvedAccess, role_name: str) -> bool:
    return access.role is not None and access.role.name == role_name


async def fetch_user_role(session: AsyncSession, user_id: int) -> RoleRef | None:
    result = await session.execute(
        select(Role.id, Role.name)
        .join(User, User.role_id == Role.id)
        .where(User.id == user_id, User.not_deleted(), Role.not_deleted())
    )
    row = result.first()
    return RoleRef(id=row.id, name=row.name) if row else None


async def fetch_user_permissions(session: AsyncSession, user_id: int) -> list[PermissionRef]:
    result = await session.execute(
        select(Permission.id, Permission.resource, Permission.action, Permission.type)
        .join(RoleHasPermission, RoleHasPermission.permission_id == Permission.id)
        .join(Role, Role.id == RoleHasPermission.role_id)
        .join(User, User.role_id == Role.id)
        .where(User.id == user_id, User.not_deleted(), Role.not_deleted(), Permission.not_deleted())
        .distinct()
        .order_by(Permission.resource, Permission.action, Permission.type)
    )
    return [
        PermissionRef(id=row.id, resource=row.resource, action=row.action, type=row.type)
        for row in result.all()
    ]


class PermissionResolver:
    """Compute ``ResolvedAccess`` for a user from their single role assignment."""

    def __init__(self, database: Database) -> None:
        self._database = database

    async def resolve(self, user_id: int) -> ResolvedAccess | None:
        async with self._database.session() as session:
            result = await session.execute(select(User.id, User.email).where(User.id == user_id, User.not_deleted()))
            user_row = result.first()
        if user_row is None:
            return None

        # Independent lookups; each needs its own session to run concurrently.
        async with self._database.session() as role_session, self._database.session() as permission_session:
            role, permissions = await asyncio.gather(
                fetch_user_role(role_session, user_id),
                fetch_user_permissions(permission_session, user_id),
            )
        return ResolvedAccess(user_id=user_row.id, email=user_row.email, role=role, permissions=permissions)
