"""Pydantic schemas for user operations."""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field, HttpUrl


class ProfileFields(BaseModel):
    name: str | None = Field(default=None, max_length=128)
    last_name: str | None = Field(default=None, max_length=128)
    phone: str | None = Field(default=None, max_length=32)


class UserProfileRead(ProfileFields):
    id: int

    model_config = ConfigDict(from_attributes=True)


class UserRead(BaseModel):
    """Public representation of a user; never carries the password hash."""

    id: int
    email: str
    google_id: str | None = None
    image: str | None = None
    role_id: int | None = None
    email_verified_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    profile: UserProfileRead | None = None

    model_config = ConfigDict(from_attributes=True)


class UserCreate(ProfileFields):
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)
    role_id: int | None = Field(default=None, ge=0)
    google_id: str | None = None
    image: HttpUrl | None = None


class UserUpdate(ProfileFields):
    email: EmailStr | None = None
    password: str | None = Field(default=None, min_length=6, max_length=128)
    role_id: int | None = Field(default=None, ge=0)
    image: HttpUrl | None = None


class UserPage(BaseModel):
    previous_page: int | None
    current_page: int
    next_page: int | None
    total: int
    total_pages: int
    limit: int
    data: list[UserRead]


class UserStats(BaseModel):
    total_users: int
    verified_users: int
    unverified_users: int
    google_users: int
    password_users: int
    total_roles: int
