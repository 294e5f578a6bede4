"""
Authentication services.
"""
from .authentication_service import AuthenticationService
from .token_service import TokenService
from .user_admin_service import UserAdminService

__all__ = ["AuthenticationService", "TokenService", "UserAdminService"]
