"""
Dependency injection for FastAPI endpoints.
Provides services, audit context and the current user.
"""
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from shared.events import AuditContext

from ..container import Container, get_container
from ..core.database import get_db
from ..core.exceptions import InvalidToken
from ..models.user import User
from ..repositories.user_repository import UserRepository
from ..services.auth.authentication_service import AuthenticationService
from ..services.auth.token_service import TokenService
from ..services.auth.user_admin_service import UserAdminService

logger = structlog.get_logger()
security = HTTPBearer()


def get_authentication_service(container: Container = Depends(get_container)) -> AuthenticationService:
    return container.get(AuthenticationService)


def get_token_service(container: Container = Depends(get_container)) -> TokenService:
    return container.get(TokenService)


def get_user_admin_service(container: Container = Depends(get_container)) -> UserAdminService:
    return container.get(UserAdminService)


def get_user_repository(container: Container = Depends(get_container)) -> UserRepository:
    return container.get(UserRepository)


async def get_audit_context(request: Request) -> AuditContext:
    """Network and tracing context of the current request."""
    return AuditContext(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        request_id=request.headers.get("x-request-id"),
        correlation_id=request.headers.get("x-correlation-id")
    )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
    token_service: TokenService = Depends(get_token_service),
    user_repository: UserRepository = Depends(get_user_repository)
) -> User:
    """
    Get current authenticated user from the bearer access token.

    Raises:
        HTTPException: If the token is invalid or the user is gone or inactive
    """
    try:
        claims = token_service.verify_access_token(credentials.credentials)
    except InvalidToken as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=e.detail,
            headers={"WWW-Authenticate": "Bearer"}
        )

    user = await user_repository.get_by_id(db, claims["sub"])
    if user is None or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"}
        )
    return user
