"""Tests for permission resolution and the authorization check."""
import pytest

from gatekeeper.core.dependencies import require_permission, require_role
from gatekeeper.core.exceptions import Forbidden
from gatekeeper.db.session import Database
from gatekeeper.schemas.rbac import PermissionCreate, RoleCreate
from gatekeeper.services import rbac
from gatekeeper.services.permissions import (
    PermissionRef,
    PermissionResolver,
    ResolvedAccess,
    RoleRef,
    has_role,
    is_authorized,
)
from gatekeeper.services.users import create_user, soft_delete_user

pytestmark = pytest.mark.asyncio


async def _editor_setup(database: Database) -> dict[str, int]:
    async with database.session() as session:
        role = await rbac.create_role(session, RoleCreate(name="editor"))
        read = await rbac.create_permission(session, PermissionCreate(resource="reports", action="read"))
        special = await rbac.create_permission(session, PermissionCreate(resource="reports", action="update", type=1))
        await rbac.assign_permissions_to_role(session, role.id, [read.id, special.id])
        user = await create_user(session, "editor@example.com", None, role_id=role.id)
        loner = await create_user(session, "loner@example.com", None)
        await session.commit()
        return {"role": role.id, "read": read.id, "special": special.id, "user": user.id, "loner": loner.id}


async def test_resolver_returns_role_and_permissions(database: Database) -> None:
    ids = await _editor_setup(database)

    access = await PermissionResolver(database).resolve(ids["user"])

    assert access is not None
    assert access.email == "editor@example.com"
    assert access.role is not None and access.role.name == "editor"
    assert has_role(access, "editor")
    assert sorted(access.permission_names) == ["reports.read", "reports.update"]


async def test_only_standard_permissions_authorize(database: Database) -> None:
    ids = await _editor_setup(database)
    access = await PermissionResolver(database).resolve(ids["user"])

    assert is_authorized(access, "reports", "read")
    # Non-standard permission types never satisfy the gate.
    assert not is_authorized(access, "reports", "update")
    assert not is_authorized(access, "reports", "delete")
    assert not is_authorized(access, "users", "read")


async def test_user_without_role_has_no_permissions(database: Database) -> None:
    ids = await _editor_setup(database)
    access = await PermissionResolver(database).resolve(ids["loner"])

    assert access is not None
    assert access.role is None
    assert access.permissions == []
    assert not is_authorized(access, "reports", "read")


async def test_unknown_or_deleted_user_resolves_to_none(database: Database) -> None:
    ids = await _editor_setup(database)
    resolver = PermissionResolver(database)

    assert await resolver.resolve(9999) is None

    async with database.session() as session:
        await soft_delete_user(session, ids["user"])
        await session.commit()
    assert await resolver.resolve(ids["user"]) is None


async def test_deleted_role_grants_nothing(database: Database) -> None:
    ids = await _editor_setup(database)
    async with database.session() as session:
        await rbac.delete_role(session, ids["role"])
        await session.commit()

    access = await PermissionResolver(database).resolve(ids["user"])
    assert access.role is None
    assert access.permissions == []


async def test_deleted_permission_is_dropped(database: Database) -> None:
    ids = await _editor_setup(database)
    async with database.session() as session:
        await rbac.delete_permission(session, ids["read"])
        await session.commit()

    access = await PermissionResolver(database).resolve(ids["user"])
    assert access.permission_names == ["reports.update"]
    assert not is_authorized(access, "reports", "read")


async def test_route_gates_check_role_and_permission() -> None:
    access = ResolvedAccess(
        user_id=1,
        email="ada@example.com",
        role=RoleRef(id=1, name="admin"),
        permissions=[PermissionRef(id=1, resource="users", action="read", type=0)],
    )

    assert await require_role("admin")(access) is access
    with pytest.raises(Forbidden, match="auditor"):
        await require_role("auditor")(access)

    assert await require_permission("users", "read")(access) is access
    with pytest.raises(Forbidden, match="users.delete"):
        await require_permission("users", "delete")(access)
