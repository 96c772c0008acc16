"""
Permission registry.

Unit-of-work service over a SQLAlchemy session: role/permission grants,
policy and field-restriction attachment, and per-user permission snapshots.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from sqlalchemy.orm import Session

from tessera.exceptions import MisconfiguredError, NotFoundError
from tessera.models.user import User
from tessera.security.rbac.actor import ACTOR_ATTRIBUTES, Actor, PermissionSnapshot
from tessera.security.rbac.conditions import (
    DEFAULT_POLICY_PRIORITY,
    normalize_policy_conditions,
    parse_condition,
)
from tessera.security.rbac.models import (
    FieldRestriction,
    Permission,
    PermissionPolicy,
    PolicyType,
    RestrictionType,
    Role,
    permission_name,
)

logger = logging.getLogger(__name__)

RoleRef = Union[Role, int, str]
PermissionRef = Union[Permission, int, str]
UserRef = Union[User, int]
Subject = Union[Actor, User, None]


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.strip().lower())
    return slug.strip("-")


class PermissionRegistry:
    """
    Grants, lookups and snapshots for one unit of work.

    Snapshots, policies and field restrictions are cached on the instance;
    every mutation that can change a user's effective permission set
    invalidates the affected entries.
    """

    def __init__(self, session: Session):
        self.session = session
        self._snapshots: Dict[int, PermissionSnapshot] = {}
        self._policies: Dict[str, List[PermissionPolicy]] = {}
        self._restrictions: Dict[str, List[FieldRestriction]] = {}

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def _snapshot_of(self, subject: Subject) -> PermissionSnapshot:
        if subject is None:
            return PermissionSnapshot.empty()
        if isinstance(subject, Actor):
            return subject.permissions
        return self.snapshot(subject)

    def has_permission(self, subject: Subject, name: str) -> bool:
        if not name:
            return False
        return self._snapshot_of(subject).has(name.strip().lower())

    def has_any_permission(self, subject: Subject, names: Iterable[str]) -> bool:
        snapshot = self._snapshot_of(subject)
        return any(snapshot.has(n.strip().lower()) for n in names if n)

    def has_all_permissions(self, subject: Subject, names: Iterable[str]) -> bool:
        snapshot = self._snapshot_of(subject)
        return all(bool(n) and snapshot.has(n.strip().lower()) for n in names)

    @staticmethod
    def _role_slug(role: RoleRef) -> str:
        if isinstance(role, Role):
            return role.slug
        return str(role)

    def has_role(self, subject: Subject, role: RoleRef) -> bool:
        return self._snapshot_of(subject).has_role(self._role_slug(role))

    def has_any_role(self, subject: Subject, roles: Iterable[RoleRef]) -> bool:
        snapshot = self._snapshot_of(subject)
        return any(snapshot.has_role(self._role_slug(r)) for r in roles)

    def has_all_roles(self, subject: Subject, roles: Iterable[RoleRef]) -> bool:
        snapshot = self._snapshot_of(subject)
        return all(snapshot.has_role(self._role_slug(r)) for r in roles)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def find_role(self, role: RoleRef) -> Role:
        if isinstance(role, Role):
            return role
        if isinstance(role, int):
            found = self.session.get(Role, role)
        else:
            found = self.session.query(Role).filter(Role.slug == role).first()
            if found is None:
                found = self.session.query(Role).filter(Role.name == role).first()
        if found is None:
            raise NotFoundError("Role", role)
        return found

    def find_permission(self, permission: PermissionRef) -> Permission:
        if isinstance(permission, Permission):
            return permission
        if isinstance(permission, int):
            found = self.session.get(Permission, permission)
        else:
            found = (
                self.session.query(Permission)
                .filter(Permission.name == permission.strip().lower())
                .first()
            )
        if found is None:
            raise NotFoundError("Permission", permission)
        return found

    def find_user(self, user: UserRef) -> User:
        if isinstance(user, User):
            return user
        found = self.session.get(User, int(user))
        if found is None:
            raise NotFoundError("User", user)
        return found

    def list_roles(self) -> List[Role]:
        return self.session.query(Role).order_by(Role.slug).all()

    def list_permissions(self, resource: Optional[str] = None) -> List[Permission]:
        query = self.session.query(Permission)
        if resource:
            query = query.filter(Permission.resource == resource.strip().lower())
        return query.order_by(Permission.name).all()

    # ------------------------------------------------------------------
    # Roles and permissions
    # ------------------------------------------------------------------

    def create_role(
        self, name: str, slug: Optional[str] = None, description: Optional[str] = None
    ) -> Role:
        slug = slug or slugify(name)
        if not slug:
            raise MisconfiguredError("Role slug must not be empty", name=name)
        existing = self.session.query(Role).filter(Role.slug == slug).first()
        if existing is not None:
            return existing
        named = self.session.query(Role).filter(Role.name == name).first()
        if named is not None:
            raise MisconfiguredError(
                f"Role name '{name}' is already used by role '{named.slug}'",
                name=name,
                slug=slug,
            )
        role = Role(name=name, slug=slug, description=description)
        self.session.add(role)
        self.session.flush()
        logger.info("Created role %s", slug)
        return role

    def create_or_get_permission(
        self, resource: str, action: str, description: Optional[str] = None
    ) -> Permission:
        if not resource or not resource.strip() or not action or not action.strip():
            raise MisconfiguredError(
                "Permission resource and action must not be empty",
                resource=resource,
                action=action,
            )
        name = permission_name(resource, action)
        existing = self.session.query(Permission).filter(Permission.name == name).first()
        if existing is not None:
            return existing
        permission = Permission(
            resource=resource.strip().lower(),
            action=action.strip().lower(),
            name=name,
            description=description,
        )
        self.session.add(permission)
        self.session.flush()
        logger.info("Created permission %s", name)
        return permission

    def create_resource_permissions(
        self, resource: str, actions: Union[Mapping[str, Optional[str]], Iterable[str]]
    ) -> List[Permission]:
        if isinstance(actions, Mapping):
            items = list(actions.items())
        else:
            items = [(action, None) for action in actions]
        return [
            self.create_or_get_permission(resource, action, description)
            for action, description in items
        ]

    def delete_permission(self, permission: PermissionRef) -> None:
        perm = self.find_permission(permission)
        name = perm.name
        for role in list(perm.roles):
            role.permissions.remove(perm)
        self.session.delete(perm)
        self.session.flush()
        self.clear_permission_cache()
        logger.info("Deleted permission %s", name)

    def grant_permission_to_role(self, role: RoleRef, permission: PermissionRef) -> Role:
        r = self.find_role(role)
        p = self.find_permission(permission)
        if p not in r.permissions:
            r.permissions.append(p)
            self.session.flush()
            self._forget_snapshots()
            logger.info("Granted %s to role %s", p.name, r.slug)
        return r

    def revoke_permission_from_role(self, role: RoleRef, permission: PermissionRef) -> Role:
        r = self.find_role(role)
        p = self.find_permission(permission)
        if p in r.permissions:
            r.permissions.remove(p)
            self.session.flush()
            self._forget_snapshots()
            logger.info("Revoked %s from role %s", p.name, r.slug)
        return r

    def sync_role_permissions(
        self, role: RoleRef, permissions: Iterable[PermissionRef]
    ) -> Role:
        r = self.find_role(role)
        wanted: List[Permission] = []
        for ref in permissions:
            p = self.find_permission(ref)
            if p not in wanted:
                wanted.append(p)
        r.permissions = wanted
        self.session.flush()
        self._forget_snapshots()
        logger.info("Synced role %s permissions: %s", r.slug, [p.name for p in wanted])
        return r

    # ------------------------------------------------------------------
    # User roles
    # ------------------------------------------------------------------

    def assign_role(self, user: UserRef, role: RoleRef) -> User:
        u = self.find_user(user)
        r = self.find_role(role)
        if r not in u.roles:
            u.roles.append(r)
            self.session.flush()
            logger.info("Assigned role %s to user %s", r.slug, u.id)
        self.clear_permission_cache(u)
        return u

    def revoke_role(self, user: UserRef, role: RoleRef) -> User:
        u = self.find_user(user)
        r = self.find_role(role)
        if r in u.roles:
            u.roles.remove(r)
            self.session.flush()
            logger.info("Revoked role %s from user %s", r.slug, u.id)
        self.clear_permission_cache(u)
        return u

    def sync_roles(self, user: UserRef, roles: Iterable[RoleRef]) -> User:
        u = self.find_user(user)
        wanted: List[Role] = []
        for ref in roles:
            r = self.find_role(ref)
            if r not in wanted:
                wanted.append(r)
        u.roles = wanted
        self.session.flush()
        self.clear_permission_cache(u)
        logger.info("Synced user %s roles: %s", u.id, [r.slug for r in wanted])
        return u

    # ------------------------------------------------------------------
    # Policies and field restrictions
    # ------------------------------------------------------------------

    def add_policy(
        self,
        permission: PermissionRef,
        policy_type: Union[PolicyType, str],
        conditions: Optional[Mapping[str, Any]] = None,
        priority: Optional[int] = None,
    ) -> PermissionPolicy:
        """
        Attach a record-level policy to a permission.

        Typed policies are completed from their defaults; the resulting tree
        is validated before anything is written. An identical policy that is
        already attached is returned as-is.
        """
        perm = self.find_permission(permission)
        ptype = PolicyType.parse(policy_type)
        if ptype is PolicyType.custom and not conditions:
            raise MisconfiguredError(
                "Custom policies require a condition tree", permission=perm.name
            )
        stored = normalize_policy_conditions(ptype, conditions)
        parse_condition(stored)
        prio = DEFAULT_POLICY_PRIORITY[ptype] if priority is None else int(priority)

        for existing in perm.policies:
            if (
                existing.policy_type == ptype.value
                and existing.conditions == stored
                and existing.priority == prio
            ):
                return existing

        policy = PermissionPolicy(policy_type=ptype.value, conditions=stored, priority=prio)
        perm.policies.append(policy)
        self.session.flush()
        self._policies.pop(perm.name, None)
        logger.info("Added %s policy (priority %s) to %s", ptype.value, prio, perm.name)
        return policy

    def add_ownership_policy(
        self, permission: PermissionRef, field: str = "user_id", priority: Optional[int] = None
    ) -> PermissionPolicy:
        conditions = {"field": field, "operator": "equals", "value": "{auth.id}"}
        return self.add_policy(permission, PolicyType.ownership, conditions, priority)

    def add_team_policy(
        self, permission: PermissionRef, field: str = "team_id", priority: Optional[int] = None
    ) -> PermissionPolicy:
        conditions = {"field": field, "operator": "equals", "value": "{auth.team_id}"}
        return self.add_policy(permission, PolicyType.team, conditions, priority)

    def add_department_policy(
        self,
        permission: PermissionRef,
        field: str = "department_id",
        priority: Optional[int] = None,
    ) -> PermissionPolicy:
        conditions = {"field": field, "operator": "equals", "value": "{auth.department_id}"}
        return self.add_policy(permission, PolicyType.department, conditions, priority)

    def add_custom_policy(
        self,
        permission: PermissionRef,
        conditions: Mapping[str, Any],
        priority: Optional[int] = None,
    ) -> PermissionPolicy:
        return self.add_policy(permission, PolicyType.custom, conditions, priority)

    def add_field_restriction(
        self,
        permission: PermissionRef,
        field_name: str,
        restriction_type: Union[RestrictionType, str] = RestrictionType.hidden,
        mask_pattern: Optional[str] = None,
    ) -> FieldRestriction:
        perm = self.find_permission(permission)
        rtype = RestrictionType.parse(restriction_type)
        if not field_name or not field_name.strip():
            raise MisconfiguredError("Restricted field name must not be empty")
        field_name = field_name.strip()

        for existing in perm.field_restrictions:
            if existing.field_name == field_name and existing.restriction_type == rtype.value:
                if mask_pattern is not None and existing.mask_pattern != mask_pattern:
                    existing.mask_pattern = mask_pattern
                    self.session.flush()
                    self._restrictions.pop(perm.name, None)
                return existing

        restriction = FieldRestriction(
            field_name=field_name, restriction_type=rtype.value, mask_pattern=mask_pattern
        )
        perm.field_restrictions.append(restriction)
        self.session.flush()
        self._restrictions.pop(perm.name, None)
        logger.info("Added %s restriction on %s to %s", rtype.value, field_name, perm.name)
        return restriction

    def policies_for(self, name: str) -> List[PermissionPolicy]:
        """Policies of a permission, highest priority first; empty when unknown."""
        key = name.strip().lower()
        cached = self._policies.get(key)
        if cached is not None:
            return cached
        policies = (
            self.session.query(PermissionPolicy)
            .join(Permission, Permission.id == PermissionPolicy.permission_id)
            .filter(Permission.name == key)
            .order_by(PermissionPolicy.priority.desc(), PermissionPolicy.id)
            .all()
        )
        self._policies[key] = policies
        return policies

    def field_restrictions_for(self, name: str) -> List[FieldRestriction]:
        key = name.strip().lower()
        cached = self._restrictions.get(key)
        if cached is not None:
            return cached
        restrictions = (
            self.session.query(FieldRestriction)
            .join(Permission, Permission.id == FieldRestriction.permission_id)
            .filter(Permission.name == key)
            .order_by(FieldRestriction.id)
            .all()
        )
        self._restrictions[key] = restrictions
        return restrictions

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def snapshot(self, user: UserRef) -> PermissionSnapshot:
        u = self.find_user(user)
        cached = self._snapshots.get(u.id)
        if cached is not None:
            return cached

        roles = list(u.roles)
        names_by_id: Dict[int, str] = {}
        for role in roles:
            for perm in role.permissions:
                names_by_id[perm.id] = perm.name

        snapshot = PermissionSnapshot(
            user_id=u.id,
            role_slugs=frozenset(r.slug for r in roles),
            permission_ids=frozenset(names_by_id),
            permission_names=frozenset(names_by_id.values()),
        )
        self._snapshots[u.id] = snapshot
        return snapshot

    def build_actor(self, user: UserRef) -> Actor:
        u = self.find_user(user)
        attributes = {name: getattr(u, name) for name in ACTOR_ATTRIBUTES if name != "id"}
        return Actor(id=u.id, attributes=attributes, permissions=self.snapshot(u))

    def _forget_snapshots(self) -> None:
        # Role-level changes can touch any user holding the role.
        self._snapshots.clear()

    def clear_permission_cache(self, user: Union[UserRef, Actor, None] = None) -> None:
        if user is None:
            self._snapshots.clear()
            self._policies.clear()
            self._restrictions.clear()
            return
        user_id = user.id if isinstance(user, (User, Actor)) else int(user)
        self._snapshots.pop(user_id, None)
