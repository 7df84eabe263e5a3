"""
User administration endpoints
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from ..auth.permissions import Permission
from ..auth.session import SecureSession
from ..core.exceptions import ValidationError
from ..core.validators import InputValidator
from ..db.models import UserFilter
from .dependencies import Authorize, Services, get_services

router = APIRouter(prefix="/api/admin/users", tags=["users"])


class CreateUserRequest(BaseModel):
    email: str = Field(min_length=1, max_length=254)
    name: str = Field(min_length=1, max_length=100)
    password: str = Field(min_length=1, max_length=128)
    role_id: Optional[str] = None


class UpdateUserRequest(BaseModel):
    name: Optional[str] = Field(default=None, max_length=100)
    role_id: Optional[str] = None
    password: Optional[str] = Field(default=None, max_length=128)
    is_active: Optional[bool] = None


@router.get("")
async def list_users(
    email: Optional[str] = Query(default=None),
    role_id: Optional[str] = Query(default=None),
    is_active: Optional[bool] = Query(default=None),
    session: SecureSession = Depends(Authorize(Permission.VIEW_USERS, csrf=False)),
    services: Services = Depends(get_services),
):
    users = await services.user_manager.list_users(
        UserFilter(email=email, role_id=role_id, is_active=is_active)
    )
    return {
        "users": [user.to_public().model_dump(mode="json") for user in users],
        "total": len(users),
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_user(
    payload: CreateUserRequest,
    session: SecureSession = Depends(Authorize(Permission.ADD_USER)),
    services: Services = Depends(get_services),
):
    email = payload.email.strip().lower()
    if not InputValidator.is_valid_email(email):
        raise ValidationError("Invalid email format")

    user = await services.user_manager.create_user(
        session,
        email=email,
        name=InputValidator.sanitize_string(payload.name),
        password=payload.password,
        role_id=payload.role_id,
    )
    return {"success": True, "user": user.to_public().model_dump(mode="json")}


@router.get("/{user_id}")
async def get_user(
    user_id: str,
    session: SecureSession = Depends(Authorize(Permission.VIEW_USER_DETAILS, csrf=False)),
    services: Services = Depends(get_services),
):
    user = await services.user_manager.get_user(user_id)
    role = services.roles.get_role(user.role_id)
    return {
        "user": user.to_public().model_dump(mode="json"),
        "role": role.to_dict() if role else None,
        "active_sessions": len(services.sessions.get_user_sessions(user_id)),
    }


@router.put("/{user_id}")
async def update_user(
    user_id: str,
    payload: UpdateUserRequest,
    session: SecureSession = Depends(Authorize(Permission.EDIT_USER)),
    services: Services = Depends(get_services),
):
    user = await services.user_manager.update_user(
        session,
        user_id,
        name=InputValidator.sanitize_string(payload.name) if payload.name is not None else None,
        role_id=payload.role_id,
        password=payload.password,
        is_active=payload.is_active,
    )
    return {"success": True, "user": user.to_public().model_dump(mode="json")}


@router.delete("/{user_id}")
async def delete_user(
    user_id: str,
    session: SecureSession = Depends(Authorize(Permission.REMOVE_USER)),
    services: Services = Depends(get_services),
):
    await services.user_manager.delete_user(session, user_id)
    return {"success": True, "message": "User deleted successfully"}


@router.post("/{user_id}/logout")
async def force_logout(
    user_id: str,
    session: SecureSession = Depends(Authorize(Permission.FORCE_LOGOUT_USERS)),
    services: Services = Depends(get_services),
):
    count = await services.user_manager.force_logout(session, user_id)
    return {"success": True, "sessions_invalidated": count}
