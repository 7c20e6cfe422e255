# directory_admin/api/v1/endpoints/users.py

import logging
from typing import List, Dict, Any, Optional
from fastapi import APIRouter, status, Query, Depends

from ....models.user import (
    UserCreate,
    UserUpdate,
    UserView,
    PasswordChange,
    DisabledChange,
    LoginEvent,
)
from ....models.reports import MutationResult, LoginResult, LoginHistory
from ....services.directory import DirectoryService
from ....core.security import require_admin
from ...deps import get_directory_service

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/users",
    tags=["Users"],
    dependencies=[Depends(require_admin)],
)

ERROR_RESPONSES = {
    400: {"description": "Invalid role or malformed request"},
    404: {"description": "No user document at the derived key"},
    503: {"description": "Document store or identity provider unavailable"},
}


# --- POST /users ---
@router.post(
    "",
    response_model=MutationResult,
    status_code=status.HTTP_201_CREATED,
    summary="Create a user (Admin Only)",
    description=(
        "Creates the identity provider principal, assigns the role claim and writes the record "
        "to users/<emailKey>, users/<uid> and the same two keys in the role collection."
    ),
    responses={
        409: {"description": "A principal with this email already exists"},
        422: {"description": "Identity provider rejected the email or password"},
        **ERROR_RESPONSES,
    },
)
async def create_user(
    user_in: UserCreate,
    service: DirectoryService = Depends(get_directory_service),
):
    logger.info(f"Create user request: {user_in.email} ({user_in.role})")
    return await service.create_user(user_in)


# --- GET /users ---
@router.get(
    "",
    response_model=List[UserView],
    summary="List users (Admin Only)",
    description="One entry per email. Physical copies of the same user are collapsed, preferring the derived-key copy.",
)
async def list_users(
    role: Optional[str] = Query(None, description="Filter by role: teacher | student | parent | assistant"),
    service: DirectoryService = Depends(get_directory_service),
):
    return await service.list_users(role=role)


# --- GET /users/{email} ---
@router.get(
    "/{email}",
    response_model=UserView,
    summary="Get a user by email (Admin Only)",
    responses=ERROR_RESPONSES,
)
async def read_user(
    email: str,
    service: DirectoryService = Depends(get_directory_service),
):
    return await service.get_user(email)


# --- PATCH /users/{email} ---
@router.patch(
    "/{email}",
    response_model=MutationResult,
    summary="Update email, name or role (Admin Only)",
    description=(
        "An email change moves the record to the new derived key. A role change moves the "
        "role-collection entry and resets the role-specific fields to the new role's defaults."
    ),
    responses={409: {"description": "Another user is stored under the new email's key"}, **ERROR_RESPONSES},
)
async def update_user(
    email: str,
    changes: UserUpdate,
    service: DirectoryService = Depends(get_directory_service),
):
    logger.info(f"Update user request for {email}: {changes.model_dump(exclude_unset=True)}")
    return await service.update_user(email, changes)


# --- PATCH /users/{email}/password ---
@router.patch(
    "/{email}/password",
    response_model=MutationResult,
    summary="Change a user's password (Admin Only)",
    responses={422: {"description": "Identity provider rejected the password"}, **ERROR_RESPONSES},
)
async def change_password(
    email: str,
    body: PasswordChange,
    service: DirectoryService = Depends(get_directory_service),
):
    return await service.change_password(email, body.password)


# --- PATCH /users/{email}/disabled ---
@router.patch(
    "/{email}/disabled",
    response_model=MutationResult,
    summary="Disable or enable a user (Admin Only)",
    responses=ERROR_RESPONSES,
)
async def set_disabled(
    email: str,
    body: DisabledChange,
    service: DirectoryService = Depends(get_directory_service),
):
    return await service.set_disabled(email, body.disabled)


# --- DELETE /users/{email} ---
@router.delete(
    "/{email}",
    response_model=MutationResult,
    summary="Delete a user (Admin Only)",
    description="Deletes the principal and every users copy. Role-collection entries are kept.",
    responses=ERROR_RESPONSES,
)
async def delete_user(
    email: str,
    admin: Dict[str, Any] = Depends(require_admin),
    service: DirectoryService = Depends(get_directory_service),
):
    logger.warning(f"Admin {admin.get('email')} deleting user {email}")
    return await service.delete_user(email)


# --- POST /users/{email}/login ---
@router.post(
    "/{email}/login",
    response_model=LoginResult,
    summary="Record a login (Admin Only)",
    responses=ERROR_RESPONSES,
)
async def record_login(
    email: str,
    body: Optional[LoginEvent] = None,
    service: DirectoryService = Depends(get_directory_service),
):
    return await service.record_login(email, body.uid if body else None)


# --- GET /users/{email}/login-history ---
@router.get(
    "/{email}/login-history",
    response_model=LoginHistory,
    summary="Get a user's login history (Admin Only)",
    responses=ERROR_RESPONSES,
)
async def read_login_history(
    email: str,
    service: DirectoryService = Depends(get_directory_service),
):
    return await service.get_login_history(email)


# --- POST /users/{email}/password-reset ---
@router.post(
    "/{email}/password-reset",
    response_model=MutationResult,
    summary="Email a password reset link (Admin Only)",
    responses=ERROR_RESPONSES,
)
async def send_password_reset(
    email: str,
    service: DirectoryService = Depends(get_directory_service),
):
    return await service.send_password_reset(email)
