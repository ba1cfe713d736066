"""Role and permission management endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from gatekeeper.core.dependencies import get_db, require_permission
from gatekeeper.schemas.rbac import (
    AssignmentResult,
    AssignPermissionsRequest,
    PermissionCreate,
    PermissionRead,
    PermissionUpdate,
    RbacStats,
    RoleCreate,
    RoleRead,
    RoleUpdate,
    RoleWithPermissions,
)
from gatekeeper.services import rbac as rbac_service

router = APIRouter(prefix="/auth", tags=["roles-permissions"])


def _role_with_permissions(entry: rbac_service.RoleWithPermissions) -> RoleWithPermissions:
    return RoleWithPermissions(
        **RoleRead.model_validate(entry.role).model_dump(),
        permissions=[PermissionRead.model_validate(permission) for permission in entry.permissions],
    )


# ---------- roles ----------


@router.post(
    "/roles",
    response_model=RoleRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_permission("roles", "create"))],
)
async def create_role(payload: RoleCreate, session: AsyncSession = Depends(get_db)) -> RoleRead:
    role = await rbac_service.create_role(session, payload)
    await session.commit()
    return RoleRead.model_validate(role)


@router.get(
    "/roles",
    response_model=list[RoleWithPermissions],
    dependencies=[Depends(require_permission("roles", "read"))],
)
async def list_roles(session: AsyncSession = Depends(get_db)) -> list[RoleWithPermissions]:
    entries = await rbac_service.list_roles_with_permissions(session)
    return [_role_with_permissions(entry) for entry in entries]


@router.get(
    "/roles/{role_id}",
    response_model=RoleWithPermissions,
    dependencies=[Depends(require_permission("roles", "read"))],
)
async def get_role(role_id: int, session: AsyncSession = Depends(get_db)) -> RoleWithPermissions:
    return _role_with_permissions(await rbac_service.get_role_with_permissions(session, role_id))


@router.put(
    "/roles/{role_id}",
    response_model=RoleRead,
    dependencies=[Depends(require_permission("roles", "update"))],
)
async def update_role(role_id: int, payload: RoleUpdate, session: AsyncSession = Depends(get_db)) -> RoleRead:
    role = await rbac_service.update_role(session, role_id, payload)
    await session.commit()
    return RoleRead.model_validate(role)


@router.delete(
    "/roles/{role_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    dependencies=[Depends(require_permission("roles", "delete"))],
)
async def delete_role(role_id: int, session: AsyncSession = Depends(get_db)) -> Response:
    await rbac_service.delete_role(session, role_id)
    await session.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------- permissions ----------


@router.post(
    "/permissions",
    response_model=PermissionRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_permission("permissions", "create"))],
)
async def create_permission(payload: PermissionCreate, session: AsyncSession = Depends(get_db)) -> PermissionRead:
    permission = await rbac_service.create_permission(session, payload)
    await session.commit()
    return PermissionRead.model_validate(permission)


@router.get(
    "/permissions",
    response_model=list[PermissionRead],
    dependencies=[Depends(require_permission("permissions", "read"))],
)
async def list_permissions(session: AsyncSession = Depends(get_db)) -> list[PermissionRead]:
    permissions = await rbac_service.list_permissions(session)
    return [PermissionRead.model_validate(permission) for permission in permissions]


@router.get(
    "/permissions/{permission_id}",
    response_model=PermissionRead,
    dependencies=[Depends(require_permission("permissions", "read"))],
)
async def get_permission(permission_id: int, session: AsyncSession = Depends(get_db)) -> PermissionRead:
    return PermissionRead.model_validate(await rbac_service.get_permission(session, permission_id))


@router.put(
    "/permissions/{permission_id}",
    response_model=PermissionRead,
    dependencies=[Depends(require_permission("permissions", "update"))],
)
async def update_permission(
    permission_id: int, payload: PermissionUpdate, session: AsyncSession = Depends(get_db)
) -> PermissionRead:
    permission = await rbac_service.update_permission(session, permission_id, payload)
    await session.commit()
    return PermissionRead.model_validate(permission)


@router.delete(
    "/permissions/{permission_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    dependencies=[Depends(require_permission("permissions", "delete"))],
)
async def delete_permission(permission_id: int, session: AsyncSession = Depends(get_db)) -> Response:
    await rbac_service.delete_permission(session, permission_id)
    await session.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------- assignments ----------


@router.post(
    "/roles/{role_id}/permissions",
    response_model=AssignmentResult,
    dependencies=[Depends(require_permission("roles", "update"))],
)
async def assign_permissions(
    role_id: int, payload: AssignPermissionsRequest, session: AsyncSession = Depends(get_db)
) -> AssignmentResult:
    assigned = await rbac_service.assign_permissions_to_role(session, role_id, payload.permission_ids)
    await session.commit()
    return AssignmentResult(role_id=role_id, assigned_permissions=assigned)


@router.get(
    "/roles/{role_id}/permissions",
    response_model=list[PermissionRead],
    dependencies=[Depends(require_permission("roles", "read"))],
)
async def get_role_permissions(role_id: int, session: AsyncSession = Depends(get_db)) -> list[PermissionRead]:
    permissions = await rbac_service.role_permissions(session, role_id)
    return [PermissionRead.model_validate(permission) for permission in permissions]


@router.delete(
    "/roles/{role_id}/permissions/{permission_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    dependencies=[Depends(require_permission("roles", "update"))],
)
async def remove_role_permission(
    role_id: int, permission_id: int, session: AsyncSession = Depends(get_db)
) -> Response:
    await rbac_service.remove_permission_from_role(session, role_id, permission_id)
    await session.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/roles-permissions/stats",
    response_model=RbacStats,
    dependencies=[Depends(require_permission("roles", "read"))],
)
async def get_stats(session: AsyncSession = Depends(get_db)) -> RbacStats:
    return RbacStats(**await rbac_service.stats(session))
