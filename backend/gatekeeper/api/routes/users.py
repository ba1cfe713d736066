"""User management endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from gatekeeper.core.dependencies import get_db, require_permission
from gatekeeper.core.exceptions import UserNotFound
from gatekeeper.schemas.user import UserCreate, UserPage, UserRead, UserStats, UserUpdate
from gatekeeper.services import users as user_service

router = APIRouter(prefix="/users", tags=["users"])


@router.post(
    "",
    response_model=UserRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_permission("users", "create"))],
)
async def create_user(payload: UserCreate, session: AsyncSession = Depends(get_db)) -> UserRead:
    user = await user_service.create_managed_user(session, payload)
    await session.commit()
    return UserRead.model_validate(user)


@router.get("/stats", response_model=UserStats, dependencies=[Depends(require_permission("users", "read"))])
async def get_user_stats(session: AsyncSession = Depends(get_db)) -> UserStats:
    return UserStats(**await user_service.user_stats(session))


@router.get("", response_model=UserPage, dependencies=[Depends(require_permission("users", "read"))])
async def list_users(
    role_id: int | None = None,
    has_profile: bool | None = None,
    search: str | None = Query(default=None, max_length=128),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    session: AsyncSession = Depends(get_db),
) -> UserPage:
    filters = user_service.UserFilters(role_id=role_id, has_profile=has_profile, search=search)
    result = await user_service.list_users(session, filters, page=page, page_size=page_size)
    return UserPage(
        previous_page=result.previous_page,
        current_page=result.current_page,
        next_page=result.next_page,
        total=result.total,
        total_pages=result.total_pages,
        limit=result.limit,
        data=[UserRead.model_validate(user) for user in result.data],
    )


@router.get("/{user_id}", response_model=UserRead, dependencies=[Depends(require_permission("users", "read"))])
async def get_user(user_id: int, session: AsyncSession = Depends(get_db)) -> UserRead:
    user = await user_service.find_user_by_id(session, user_id)
    if user is None:
        raise UserNotFound()
    return UserRead.model_validate(user)


@router.put("/{user_id}", response_model=UserRead, dependencies=[Depends(require_permission("users", "update"))])
async def update_user(user_id: int, payload: UserUpdate, session: AsyncSession = Depends(get_db)) -> UserRead:
    user = await user_service.update_user(session, user_id, payload)
    await session.commit()
    return UserRead.model_validate(user)


@router.delete(
    "/{user_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    dependencies=[Depends(require_permission("users", "delete"))],
)
async def delete_user(user_id: int, session: AsyncSession = Depends(get_db)) -> Response:
    await user_service.soft_delete_user(session, user_id)
    await session.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
