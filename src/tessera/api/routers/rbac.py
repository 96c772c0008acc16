from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from tessera.api.dependencies.auth import RequirePermission, get_registry
from tessera.exceptions import TesseraException
from tessera.security.rbac.actor import Actor
from tessera.security.rbac.models import Permission, PermissionPolicy, FieldRestriction, Role
from tessera.security.rbac.registry import PermissionRegistry

router = APIRouter(prefix="/rbac", tags=["RBAC"])

require_rbac_manage = RequirePermission("rbac.manage")


class RoleCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    slug: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = None


class RoleResponse(BaseModel):
    id: int
    name: str
    slug: str
    description: Optional[str] = None
    permissions: List[str] = Field(default_factory=list)


class PermissionCreateRequest(BaseModel):
    resource: str = Field(..., min_length=1, max_length=100)
    action: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = None


class PermissionResponse(BaseModel):
    id: int
    name: str
    resource: str
    action: str
    description: Optional[str] = None
    policies: int = 0
    field_restrictions: int = 0


class GrantRequest(BaseModel):
    permission: str = Field(..., min_length=1)


class AssignRoleRequest(BaseModel):
    role: str = Field(..., min_length=1)


class PolicyCreateRequest(BaseModel):
    policy_type: str = Field(..., description="ownership | team | department | custom")
    conditions: Optional[Dict[str, Any]] = None
    priority: Optional[int] = None


class PolicyResponse(BaseModel):
    id: int
    permission: str
    policy_type: str
    conditions: Dict[str, Any]
    priority: int


class FieldRestrictionCreateRequest(BaseModel):
    field_name: str = Field(..., min_length=1, max_length=100)
    restriction_type: str = Field(default="hidden", description="hidden | masked | readonly")
    mask_pattern: Optional[str] = Field(default=None, max_length=50)


class FieldRestrictionResponse(BaseModel):
    id: int
    permission: str
    field_name: str
    restriction_type: str
    mask_pattern: Optional[str] = None


def _role_response(role: Role) -> RoleResponse:
    return RoleResponse(
        id=role.id,
        name=role.name,
        slug=role.slug,
        description=role.description,
        permissions=role.permission_names(),
    )


def _permission_response(perm: Permission) -> PermissionResponse:
    return PermissionResponse(
        id=perm.id,
        name=perm.name,
        resource=perm.resource,
        action=perm.action,
        description=perm.description,
        policies=len(perm.policies),
        field_restrictions=len(perm.field_restrictions),
    )


def _policy_response(policy: PermissionPolicy) -> PolicyResponse:
    return PolicyResponse(
        id=policy.id,
        permission=policy.permission.name,
        policy_type=policy.policy_type,
        conditions=policy.conditions,
        priority=policy.priority,
    )


def _restriction_response(restriction: FieldRestriction) -> FieldRestrictionResponse:
    return FieldRestrictionResponse(
        id=restriction.id,
        permission=restriction.permission.name,
        field_name=restriction.field_name,
        restriction_type=restriction.restriction_type,
        mask_pattern=restriction.mask_pattern,
    )


def _http_error(registry: PermissionRegistry, exc: TesseraException) -> HTTPException:
    registry.session.rollback()
    return HTTPException(status_code=exc.status_code, detail=exc.to_dict())


@router.get("/roles", response_model=List[RoleResponse])
def list_roles(
    _: Actor = Depends(require_rbac_manage),
    registry: PermissionRegistry = Depends(get_registry),
) -> List[RoleResponse]:
    return [_role_response(r) for r in registry.list_roles()]


@router.post("/roles", response_model=RoleResponse)
def create_role(
    req: RoleCreateRequest,
    _: Actor = Depends(require_rbac_manage),
    registry: PermissionRegistry = Depends(get_registry),
) -> RoleResponse:
    try:
        role = registry.create_role(req.name, req.slug, req.description)
    except TesseraException as exc:
        raise _http_error(registry, exc) from exc
    registry.session.commit()
    return _role_response(role)


@router.get("/permissions", response_model=List[PermissionResponse])
def list_permissions(
    resource: Optional[str] = None,
    _: Actor = Depends(require_rbac_manage),
    registry: PermissionRegistry = Depends(get_registry),
) -> List[PermissionResponse]:
    return [_permission_response(p) for p in registry.list_permissions(resource)]


@router.post("/permissions", response_model=PermissionResponse)
def create_permission(
    req: PermissionCreateRequest,
    _: Actor = Depends(require_rbac_manage),
    registry: PermissionRegistry = Depends(get_registry),
) -> PermissionResponse:
    try:
        perm = registry.create_or_get_permission(req.resource, req.action, req.description)
    except TesseraException as exc:
        raise _http_error(registry, exc) from exc
    registry.session.commit()
    return _permission_response(perm)


@router.delete("/permissions/{name}")
def delete_permission(
    name: str,
    _: Actor = Depends(require_rbac_manage),
    registry: PermissionRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    try:
        registry.delete_permission(name)
    except TesseraException as exc:
        raise _http_error(registry, exc) from exc
    registry.session.commit()
    return {"ok": True, "deleted": name}


@router.post("/roles/{role}/permissions", response_model=RoleResponse)
def grant_permission(
    role: str,
    req: GrantRequest,
    _: Actor = Depends(require_rbac_manage),
    registry: PermissionRegistry = Depends(get_registry),
) -> RoleResponse:
    try:
        updated = registry.grant_permission_to_role(role, req.permission)
    except TesseraException as exc:
        raise _http_error(registry, exc) from exc
    registry.session.commit()
    return _role_response(updated)


@router.delete("/roles/{role}/permissions/{permission}", response_model=RoleResponse)
def revoke_permission(
    role: str,
    permission: str,
    _: Actor = Depends(require_rbac_manage),
    registry: PermissionRegistry = Depends(get_registry),
) -> RoleResponse:
    try:
        updated = registry.revoke_permission_from_role(role, permission)
    except TesseraException as exc:
        raise _http_error(registry, exc) from exc
    registry.session.commit()
    return _role_response(updated)


@router.get("/users/{user_id}/permissions")
def user_permissions(
    user_id: int,
    _: Actor = Depends(require_rbac_manage),
    registry: PermissionRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    try:
        snapshot = registry.snapshot(user_id)
    except TesseraException as exc:
        raise _http_error(registry, exc) from exc
    return {
        "user_id": user_id,
        "roles": sorted(snapshot.role_slugs),
        "permissions": sorted(snapshot.permission_names),
    }


@router.post("/users/{user_id}/roles")
def assign_role(
    user_id: int,
    req: AssignRoleRequest,
    _: Actor = Depends(require_rbac_manage),
    registry: PermissionRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    try:
        user = registry.assign_role(user_id, req.role)
    except TesseraException as exc:
        raise _http_error(registry, exc) from exc
    registry.session.commit()
    return {"user_id": user.id, "roles": sorted(r.slug for r in user.roles)}


@router.delete("/users/{user_id}/roles/{role}")
def revoke_role(
    user_id: int,
    role: str,
    _: Actor = Depends(require_rbac_manage),
    registry: PermissionRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    try:
        user = registry.revoke_role(user_id, role)
    except TesseraException as exc:
        raise _http_error(registry, exc) from exc
    registry.session.commit()
    return {"user_id": user.id, "roles": sorted(r.slug for r in user.roles)}


@router.get("/permissions/{name}/policies", response_model=List[PolicyResponse])
def list_policies(
    name: str,
    _: Actor = Depends(require_rbac_manage),
    registry: PermissionRegistry = Depends(get_registry),
) -> List[PolicyResponse]:
    try:
        perm = registry.find_permission(name)
    except TesseraException as exc:
        raise _http_error(registry, exc) from exc
    return [_policy_response(p) for p in registry.policies_for(perm.name)]


@router.post("/permissions/{name}/policies", response_model=PolicyResponse)
def add_policy(
    name: str,
    req: PolicyCreateRequest,
    _: Actor = Depends(require_rbac_manage),
    registry: PermissionRegistry = Depends(get_registry),
) -> PolicyResponse:
    try:
        policy = registry.add_policy(name, req.policy_type, req.conditions, req.priority)
    except TesseraException as exc:
        raise _http_error(registry, exc) from exc
    registry.session.commit()
    return _policy_response(policy)


@router.post("/permissions/{name}/field-restrictions", response_model=FieldRestrictionResponse)
def add_field_restriction(
    name: str,
    req: FieldRestrictionCreateRequest,
    _: Actor = Depends(require_rbac_manage),
    registry: PermissionRegistry = Depends(get_registry),
) -> FieldRestrictionResponse:
    try:
        restriction = registry.add_field_restriction(
            name, req.field_name, req.restriction_type, req.mask_pattern
        )
    except TesseraException as exc:
        raise _http_error(registry, exc) from exc
    registry.session.commit()
    return _restriction_response(restriction)
