from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, FrozenSet, Iterable, Mapping, Optional, Union

Value = Union[str, int, float, bool, None]

# Columns copied from a user row into `Actor.attributes`.
ACTOR_ATTRIBUTES = ("id", "username", "email", "team_id", "department_id", "is_active")


@dataclass(frozen=True)
class PermissionSnapshot:
    """Effective permission set of one user at one point in time."""

    user_id: Optional[int]
    role_slugs: FrozenSet[str] = frozenset()
    permission_ids: FrozenSet[int] = frozenset()
    permission_names: FrozenSet[str] = frozenset()

    def has(self, permission_name: str) -> bool:
        return permission_name in self.permission_names

    def has_role(self, slug: str) -> bool:
        return slug in self.role_slugs

    @classmethod
    def empty(cls, user_id: Optional[int] = None) -> "PermissionSnapshot":
        return cls(user_id=user_id)


def _freeze(attributes: Mapping[str, Any]) -> Mapping[str, Value]:
    return MappingProxyType(dict(attributes))


@dataclass(frozen=True)
class Actor:
    """
    Immutable view of the authenticated principal for one unit of work.

    Built once per request by `PermissionRegistry.build_actor`; a role
    change only becomes visible through a freshly built actor.
    """

    id: int
    attributes: Mapping[str, Value] = field(default_factory=dict, hash=False)
    permissions: PermissionSnapshot = field(default_factory=PermissionSnapshot.empty)

    def __post_init__(self) -> None:
        object.__setattr__(self, "attributes", _freeze(self.attributes))

    def get(self, name: str) -> Value:
        if name == "id":
            return self.id
        return self.attributes.get(name)

    def has_attribute(self, name: str) -> bool:
        return name == "id" or name in self.attributes

    @property
    def roles(self) -> FrozenSet[str]:
        return self.permissions.role_slugs

    @classmethod
    def from_attributes(
        cls,
        attributes: Mapping[str, Any],
        *,
        permissions: Iterable[str] = (),
        roles: Iterable[str] = (),
    ) -> "Actor":
        """Build an actor without a database, e.g. for tests or service tokens."""
        actor_id = int(attributes["id"])
        snapshot = PermissionSnapshot(
            user_id=actor_id,
            role_slugs=frozenset(roles),
            permission_names=frozenset(permissions),
        )
        return cls(id=actor_id, attributes=attributes, permissions=snapshot)
