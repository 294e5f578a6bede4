"""
User administration endpoints (administrators only).
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from shared.events import AuditContext

from ..core.database import get_db
from ..core.exceptions import AuthError
from ..models.user import User
from ..schemas.auth_schemas import (
    ChangeRoleRequest,
    CreateUserRequest,
    CreateUserResult,
    DeactivateUserRequest,
    UserSummary,
)
from ..services.auth.user_admin_service import UserAdminService
from .auth import to_http_exception
from .deps import get_audit_context, get_current_user, get_user_admin_service

router = APIRouter(prefix="/users", tags=["users"])


@router.post("", response_model=CreateUserResult, status_code=status.HTTP_201_CREATED)
async def create_user(
    data: CreateUserRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    admin_service: UserAdminService = Depends(get_user_admin_service),
    context: AuditContext = Depends(get_audit_context)
):
    """Create an account with a temporary password."""
    try:
        return await admin_service.create_user(db, data, current_user, context)
    except AuthError as e:
        raise to_http_exception(e)


@router.post("/{user_id}/activate", response_model=UserSummary)
async def activate_user(
    user_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    admin_service: UserAdminService = Depends(get_user_admin_service),
    context: AuditContext = Depends(get_audit_context)
):
    try:
        return await admin_service.activate_user(db, user_id, current_user, context)
    except AuthError as e:
        raise to_http_exception(e)


@router.post("/{user_id}/deactivate", response_model=UserSummary)
async def deactivate_user(
    user_id: str,
    data: DeactivateUserRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    admin_service: UserAdminService = Depends(get_user_admin_service),
    context: AuditContext = Depends(get_audit_context)
):
    """Deactivate an account and revoke its sessions."""
    try:
        return await admin_service.deactivate_user(db, user_id, current_user, data.reason, context)
    except AuthError as e:
        raise to_http_exception(e)


@router.patch("/{user_id}/role", response_model=UserSummary)
async def change_role(
    user_id: str,
    data: ChangeRoleRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    admin_service: UserAdminService = Depends(get_user_admin_service),
    context: AuditContext = Depends(get_audit_context)
):
    try:
        return await admin_service.change_role(db, user_id, data.role, current_user, context)
    except AuthError as e:
        raise to_http_exception(e)
