"""Service layer for role and permission management."""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field

from sqlalchemy import delete, func, insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from gatekeeper.core.config import AUTOMATION_ROLE_ID
from gatekeeper.core.exceptions import (
    DuplicatePermission,
    DuplicateRole,
    PermissionNotAssigned,
    PermissionNotFound,
    RoleNotFound,
)
from gatekeeper.db.base import utcnow
from gatekeeper.models import Permission, Role, RoleHasPermission
from gatekeeper.schemas.rbac import PermissionCreate, PermissionUpdate, RoleCreate, RoleUpdate

logger = logging.getLogger(__name__)

ADMIN_ROLE_NAME = "admin"
AUTOMATION_ROLE_NAME = "automation"
MANAGED_RESOURCES = ("users", "roles", "permissions")
CRUD_ACTIONS = ("create", "read", "update", "delete")


@dataclass(slots=True)
class RoleWithPermissions:
    role: Role
    permissions: list[Permission] = field(default_factory=list)


# ---------- roles ----------


async def role_name_exists(session: AsyncSession, name: str, exclude_id: int | None = None) -> bool:
    query = select(Role.id).where(func.lower(Role.name) == name.lower(), Role.not_deleted())
    if exclude_id is not None:
        query = query.where(Role.id != exclude_id)
    result = await session.execute(query.limit(1))
    return result.first() is not None


async def get_role(session: AsyncSession, role_id: int) -> Role | None:
    result = await session.execute(select(Role).where(Role.id == role_id, Role.not_deleted()))
    return result.scalar_one_or_none()


async def get_role_by_name(session: AsyncSession, name: str) -> Role | None:
    result = await session.execute(select(Role).where(Role.name == name, Role.not_deleted()))
    return result.scalar_one_or_none()


async def _require_role(session: AsyncSession, role_id: int) -> Role:
    role = await get_role(session, role_id)
    if role is None:
        raise RoleNotFound()
    return role


async def create_role(session: AsyncSession, data: RoleCreate) -> Role:
    if await role_name_exists(session, data.name):
        raise DuplicateRole(f"A role named '{data.name}' already exists")
    role = Role(name=data.name)
    session.add(role)
    await session.flush()
    return role


async def update_role(session: AsyncSession, role_id: int, data: RoleUpdate) -> Role:
    role = await _require_role(session, role_id)
    if await role_name_exists(session, data.name, exclude_id=role_id):
        raise DuplicateRole(f"A role named '{data.name}' already exists")
    role.name = data.name
    role.updated_at = utcnow()
    await session.flush()
    return role


async def delete_role(session: AsyncSession, role_id: int) -> None:
    role = await _require_role(session, role_id)
    role.soft_delete()
    await session.flush()


async def _permissions_by_role(session: AsyncSession, role_ids: list[int]) -> dict[int, list[Permission]]:
    if not role_ids:
        return {}
    result = await session.execute(
        select(RoleHasPermission.role_id, Permission)
        .join(Permission, Permission.id == RoleHasPermission.permission_id)
        .where(RoleHasPermission.role_id.in_(role_ids), Permission.not_deleted())
        .order_by(Permission.resource, Permission.action)
    )
    grouped: dict[int, list[Permission]] = defaultdict(list)
    for role_id, permission in result.all():
        grouped[role_id].append(permission)
    return grouped


async def list_roles_with_permissions(session: AsyncSession) -> list[RoleWithPermissions]:
    result = await session.execute(select(Role).where(Role.not_deleted()).order_by(Role.id))
    roles = list(result.scalars().all())
    grouped = await _permissions_by_role(session, [role.id for role in roles])
    return [RoleWithPermissions(role=role, permissions=grouped.get(role.id, [])) for role in roles]


async def get_role_with_permissions(session: AsyncSession, role_id: int) -> RoleWithPermissions:
    role = await _require_role(session, role_id)
    grouped = await _permissions_by_role(session, [role.id])
    return RoleWithPermissions(role=role, permissions=grouped.get(role.id, []))


# ---------- permissions ----------


async def permission_exists(session: AsyncSession, permission_id: int) -> bool:
    result = await session.execute(
        select(Permission.id).where(Permission.id == permission_id, Permission.not_deleted())
    )
    return result.first() is not None


async def permission_triple_exists(
    session: AsyncSession, resource: str, action: str, type_: int, exclude_id: int | None = None
) -> bool:
    query = select(Permission.id).where(
        Permission.resource == resource,
        Permission.action == action,
        Permission.type == type_,
        Permission.not_deleted(),
    )
    if exclude_id is not None:
        query = query.where(Permission.id != exclude_id)
    result = await session.execute(query.limit(1))
    return result.first() is not None


async def list_permissions(session: AsyncSession) -> list[Permission]:
    result = await session.execute(
        select(Permission).where(Permission.not_deleted()).order_by(Permission.resource, Permission.action)
    )
    return list(result.scalars().all())


async def get_permission(session: AsyncSession, permission_id: int) -> Permission:
    result = await session.execute(
        select(Permission).where(Permission.id == permission_id, Permission.not_deleted())
    )
    permission = result.scalar_one_or_none()
    if permission is None:
        raise PermissionNotFound()
    return permission


async def create_permission(session: AsyncSession, data: PermissionCreate) -> Permission:
    if await permission_triple_exists(session, data.resource, data.action, data.type):
        raise DuplicatePermission(f"Permission '{data.resource}:{data.action}' already exists")
    permission = Permission(resource=data.resource, action=data.action, type=data.type)
    session.add(permission)
    await session.flush()
    return permission


async def update_permission(session: AsyncSession, permission_id: int, data: PermissionUpdate) -> Permission:
    permission = await get_permission(session, permission_id)
    if await permission_triple_exists(session, data.resource, data.action, data.type, exclude_id=permission_id):
        raise DuplicatePermission(f"Permission '{data.resource}:{data.action}' already exists")
    permission.resource = data.resource
    permission.action = data.action
    permission.type = data.type
    permission.updated_at = utcnow()
    await session.flush()
    return permission


async def delete_permission(session: AsyncSession, permission_id: int) -> None:
    permission = await get_permission(session, permission_id)
    permission.soft_delete()
    await session.flush()


# ---------- assignments ----------


async def assign_permissions_to_role(session: AsyncSession, role_id: int, permission_ids: list[int]) -> int:
    """Replace the role's permission set; an empty list clears it.

    The delete and the insert run in the session's open transaction, so
    they become visible together when the caller commits and are discarded
    together if anything fails first.
    """
    await _require_role(session, role_id)
    for permission_id in permission_ids:
        if not await permission_exists(session, permission_id):
            raise PermissionNotFound(f"Permission with id {permission_id} not found")

    await session.execute(delete(RoleHasPermission).where(RoleHasPermission.role_id == role_id))
    if permission_ids:
        await session.execute(
            insert(RoleHasPermission),
            [{"role_id": role_id, "permission_id": permission_id} for permission_id in permission_ids],
        )
    await session.flush()
    logger.info("Role %s now holds %d permission(s)", role_id, len(permission_ids))
    return len(permission_ids)


async def role_permissions(session: AsyncSession, role_id: int) -> list[Permission]:
    await _require_role(session, role_id)
    grouped = await _permissions_by_role(session, [role_id])
    return grouped.get(role_id, [])


async def role_has_permission(session: AsyncSession, role_id: int, permission_id: int) -> bool:
    result = await session.execute(
        select(RoleHasPermission.role_id).where(
            RoleHasPermission.role_id == role_id, RoleHasPermission.permission_id == permission_id
        )
    )
    return result.first() is not None


async def remove_permission_from_role(session: AsyncSession, role_id: int, permission_id: int) -> None:
    await _require_role(session, role_id)
    if not await permission_exists(session, permission_id):
        raise PermissionNotFound()
    if not await role_has_permission(session, role_id, permission_id):
        raise PermissionNotAssigned()
    await session.execute(
        delete(RoleHasPermission).where(
            RoleHasPermission.role_id == role_id, RoleHasPermission.permission_id == permission_id
        )
    )
    await session.flush()


async def stats(session: AsyncSession) -> dict[str, int]:
    roles = await list_roles_with_permissions(session)
    permissions = await list_permissions(session)
    return {
        "total_roles": len(roles),
        "total_permissions": len(permissions),
        "roles_with_permissions": sum(1 for entry in roles if entry.permissions),
    }


# ---------- bootstrap ----------


async def seed_defaults(session: AsyncSession) -> Role:
    """Ensure the management permissions, the admin role, and the automation role exist.

    Safe to run on every startup. Returns the admin role.
    """
    permission_ids: list[int] = []
    for resource in MANAGED_RESOURCES:
        for action in CRUD_ACTIONS:
            result = await session.execute(
                select(Permission).where(
                    Permission.resource == resource,
                    Permission.action == action,
                    Permission.type == 0,
                    Permission.not_deleted(),
                )
            )
            permission = result.scalar_one_or_none()
            if permission is None:
                permission = Permission(resource=resource, action=action, type=0)
                session.add(permission)
                await session.flush()
            permission_ids.append(permission.id)

    admin = await get_role_by_name(session, ADMIN_ROLE_NAME)
    if admin is None:
        admin = Role(name=ADMIN_ROLE_NAME)
        session.add(admin)
        await session.flush()
        for permission_id in permission_ids:
            session.add(RoleHasPermission(role_id=admin.id, permission_id=permission_id))
        logger.info("Seeded '%s' role with %d permission(s)", ADMIN_ROLE_NAME, len(permission_ids))

    result = await session.execute(select(Role).where(Role.id == AUTOMATION_ROLE_ID))
    if result.scalar_one_or_none() is None:
        session.add(Role(id=AUTOMATION_ROLE_ID, name=AUTOMATION_ROLE_NAME))
        logger.info("Seeded automation role with id %s", AUTOMATION_ROLE_ID)

    await session.flush()
    return admin
