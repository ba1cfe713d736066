"""Route modules for the Gatekeeper API."""
from . import auth, rbac, users

__all__ = ["auth", "rbac", "users"]
