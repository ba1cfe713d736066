"""SQLAlchemy models exposed for metadata creation and imports."""
from .rbac import STANDARD_PERMISSION_TYPE, Permission, Role, RoleHasPermission
from .token import OAuthToken, PasswordResetToken
from .user import User, UserProfile

__all__ = [
    "User",
    "UserProfile",
    "Role",
    "Permission",
    "RoleHasPermission",
    "OAuthToken",
    "PasswordResetToken",
    "STANDARD_PERMISSION_TYPE",
]
