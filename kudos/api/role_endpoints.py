"""
Role and permission catalog endpoints
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from ..auth.permissions import (
    Permission,
    PermissionCategory,
    get_all_permissions,
    get_permissions_by_category,
    parse_permissions,
)
from ..auth.session import SecureSession
from ..core.exceptions import ConflictError, RoleValidationError
from ..db.models import UserFilter
from .dependencies import Authorize, Services, get_services

router = APIRouter(prefix="/api/admin", tags=["roles"])


class CreateRoleRequest(BaseModel):
    name: str = Field(min_length=1, max_length=50)
    description: str = Field(default="", max_length=500)
    permissions: List[str] = Field(default_factory=list)


class UpdateRoleRequest(BaseModel):
    name: Optional[str] = Field(default=None, max_length=50)
    description: Optional[str] = Field(default=None, max_length=500)
    permissions: Optional[List[str]] = None


def _check_permission_names(values: List[str]) -> None:
    _, invalid = parse_permissions(values)
    if invalid:
        raise RoleValidationError(
            "Invalid permissions",
            details={
                "invalid_permissions": invalid,
                "valid_permissions": [p.value for p in Permission],
            },
        )


@router.get("/roles")
async def list_roles(
    session: SecureSession = Depends(Authorize(Permission.VIEW_ROLES, csrf=False)),
    services: Services = Depends(get_services),
):
    roles = services.roles.list_roles()
    assignable = {role.id for role in services.roles.get_assignable_roles(session.permissions)}
    return {
        "roles": [
            {**role.to_dict(), "can_assign": role.id in assignable}
            for role in roles
        ],
        "total": len(roles),
    }


@router.post("/roles", status_code=status.HTTP_201_CREATED)
async def create_role(
    payload: CreateRoleRequest,
    session: SecureSession = Depends(Authorize(Permission.MANAGE_ROLES)),
    services: Services = Depends(get_services),
):
    _check_permission_names(payload.permissions)
    role = services.roles.create_role(payload.name, payload.description, payload.permissions)
    return {"success": True, "role": role.to_dict()}


@router.put("/roles/{role_id}")
async def update_role(
    role_id: str,
    payload: UpdateRoleRequest,
    session: SecureSession = Depends(Authorize(Permission.MANAGE_ROLES)),
    services: Services = Depends(get_services),
):
    if payload.permissions is not None:
        _check_permission_names(payload.permissions)
    role = services.roles.update_role(
        role_id,
        name=payload.name,
        description=payload.description,
        permissions=payload.permissions,
    )
    services.sessions.refresh_role(role.id, role.name, role.permissions)
    return {"success": True, "role": role.to_dict()}


@router.delete("/roles/{role_id}")
async def delete_role(
    role_id: str,
    session: SecureSession = Depends(Authorize(Permission.MANAGE_ROLES)),
    services: Services = Depends(get_services),
):
    holders = await services.users.find_many(UserFilter(role_id=role_id, is_active=True))
    role = services.roles.get_role(role_id)
    if holders and role is not None and not role.is_system_role:
        raise ConflictError(
            "Role is assigned to active users",
            details={"user_count": len(holders)},
        )
    services.roles.delete_role(role_id)
    return {"success": True, "message": "Role deleted successfully"}


@router.get("/permissions")
async def list_permissions(
    session: SecureSession = Depends(Authorize(Permission.VIEW_ROLES, csrf=False)),
):
    return {
        "permissions": [meta.to_dict() for meta in get_all_permissions()],
        "permissions_by_category": {
            category.value: [meta.to_dict() for meta in get_permissions_by_category(category)]
            for category in PermissionCategory
        },
        "categories": [category.value for category in PermissionCategory],
    }
