"""
Authentication endpoints for the auth service.
Implements register, login, token refresh, logout and current-user lookup.
"""
from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from shared.events import AuditContext

from ..core.database import get_db
from ..core.exceptions import AuthError
from ..models.user import User
from ..schemas.auth_schemas import (
    AuthTokens,
    LoginRequest,
    LoginResult,
    RefreshTokenRequest,
    RegisterRequest,
    RegisterResponse,
    UserSummary,
)
from ..services.auth.authentication_service import AuthenticationService
from ..services.auth.token_service import TokenService
from ..services.auth.user_admin_service import UserAdminService
from .deps import (
    get_audit_context,
    get_authentication_service,
    get_current_user,
    get_token_service,
    get_user_admin_service,
)

logger = structlog.get_logger()
router = APIRouter(prefix="/auth", tags=["authentication"])


def to_http_exception(error: AuthError) -> HTTPException:
    headers = {"WWW-Authenticate": "Bearer"} if error.status_code == status.HTTP_401_UNAUTHORIZED else None
    return HTTPException(status_code=error.status_code, detail=error.detail, headers=headers)


@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
async def register(
    data: RegisterRequest,
    db: AsyncSession = Depends(get_db),
    auth_service: AuthenticationService = Depends(get_authentication_service),
    context: AuditContext = Depends(get_audit_context)
):
    """Register a new account."""
    try:
        return await auth_service.register(db, data, context)
    except AuthError as e:
        raise to_http_exception(e)


@router.post("/login", response_model=LoginResult)
async def login(
    data: LoginRequest,
    db: AsyncSession = Depends(get_db),
    auth_service: AuthenticationService = Depends(get_authentication_service),
    context: AuditContext = Depends(get_audit_context)
):
    """
    Authenticate user and issue tokens.

    Returns 401 with a generic message for unknown emails and wrong
    passwords alike, and 423 while the account is locked.
    """
    try:
        return await auth_service.login(db, data.email, data.password, context)
    except AuthError as e:
        raise to_http_exception(e)


@router.post("/refresh", response_model=AuthTokens)
async def refresh(
    data: RefreshTokenRequest,
    db: AsyncSession = Depends(get_db),
    token_service: TokenService = Depends(get_token_service),
    context: AuditContext = Depends(get_audit_context)
):
    """Rotate a refresh token. The presented token cannot be used again."""
    try:
        return await token_service.refresh(
            db,
            data.refresh_token,
            ip_address=context.ip_address,
            device_info=context.user_agent
        )
    except AuthError as e:
        raise to_http_exception(e)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    token_service: TokenService = Depends(get_token_service),
    context: AuditContext = Depends(get_audit_context)
):
    """Revoke all refresh tokens of the current user."""
    await token_service.logout(db, current_user, context)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/me", response_model=UserSummary)
async def me(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    admin_service: UserAdminService = Depends(get_user_admin_service)
):
    try:
        return await admin_service.get_me(db, current_user.id)
    except AuthError as e:
        raise to_http_exception(e)
