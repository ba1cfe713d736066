"""Authentication-related schemas."""
from __future__ import annotations

from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    HttpUrl,
    SerializerFunctionWrapHandler,
    model_serializer,
    model_validator,
)

from .rbac import PermissionRef, RoleRef
from .user import ProfileFields, UserRead


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)


class RegisterRequest(ProfileFields):
    email: EmailStr
    password: str | None = Field(default=None, min_length=6, max_length=128)
    auto_generate_password: bool = Field(default=False, alias="autoGeneratePassword")
    google_id: str | None = None
    image: HttpUrl | None = None

    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="after")
    def _require_password_source(self) -> RegisterRequest:
        if not self.password and not self.auto_generate_password:
            raise ValueError("Provide a password or set autoGeneratePassword")
        return self


class AuthResponse(BaseModel):
    user: UserRead
    token: str
    token_type: str = "bearer"


class RegisterResponse(AuthResponse):
    generated_password: str | None = Field(default=None, alias="generatedPassword")
    password_message: str | None = Field(default=None, alias="passwordMessage")

    model_config = ConfigDict(populate_by_name=True)

    @model_serializer(mode="wrap")
    def _omit_unset_password(self, handler: SerializerFunctionWrapHandler) -> dict[str, Any]:
        data = handler(self)
        # The password fields only appear when a password was generated.
        for key in ("generated_password", "generatedPassword", "password_message", "passwordMessage"):
            if key in data and data[key] is None:
                del data[key]
        return data


class AuthStatus(BaseModel):
    has_users: bool


class IdentityRead(BaseModel):
    user_id: int
    email: str
    role: RoleRef | None
    permissions: list[PermissionRef]


class PasswordResetRequest(BaseModel):
    email: EmailStr


class PasswordResetConfirm(BaseModel):
    token: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6, max_length=128, alias="newPassword")

    model_config = ConfigDict(populate_by_name=True)


class TokenVerification(BaseModel):
    valid: bool
    message: str | None = None


class MessageResponse(BaseModel):
    message: str
