from .refresh_token_repository import RefreshTokenRepository
from .user_repository import UserRepository

__all__ = ["RefreshTokenRepository", "UserRepository"]
