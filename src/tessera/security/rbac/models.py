"""
RBAC Models - roles, permissions, record policies and field restrictions.
"""

from __future__ import annotations

import enum
import logging
from datetime import datetime
from typing import List

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship, validates

from tessera.exceptions import MisconfiguredError
from tessera.models.base import Base

logger = logging.getLogger(__name__)

rbac_metadata = Base.metadata


class PolicyType(str, enum.Enum):
    ownership = "ownership"
    team = "team"
    department = "department"
    custom = "custom"

    @classmethod
    def parse(cls, value: "PolicyType | str") -> "PolicyType":
        try:
            return cls(value)
        except ValueError:
            raise MisconfiguredError(
                f"Unknown policy type: {value!r}", policy_type=str(value)
            ) from None


class RestrictionType(str, enum.Enum):
    hidden = "hidden"
    masked = "masked"
    readonly = "readonly"

    @classmethod
    def parse(cls, value: "RestrictionType | str") -> "RestrictionType":
        try:
            return cls(value)
        except ValueError:
            raise MisconfiguredError(
                f"Unknown restriction type: {value!r}", restriction_type=str(value)
            ) from None


DEFAULT_MASK_PATTERN = "***"

role_user = Table(
    "role_user",
    rbac_metadata,
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("assigned_at", DateTime, default=datetime.now),
    Index("ix_role_user_user_id", "user_id"),
)

permission_role = Table(
    "permission_role",
    rbac_metadata,
    Column(
        "permission_id",
        Integer,
        ForeignKey("permissions.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    Column("granted_at", DateTime, default=datetime.now),
    Index("ix_permission_role_role_id", "role_id"),
)


def permission_name(resource: str, action: str) -> str:
    return f"{resource.strip().lower()}.{action.strip().lower()}"


class Role(Base):
    __tablename__ = "roles"

    id = Column(Integer, primary_key=True)
    name = Column(String(100), unique=True, nullable=False)
    slug = Column(String(100), unique=True, nullable=False, index=True)
    description = Column(Text)

    permissions = relationship(
        "Permission", secondary=permission_role, back_populates="roles"
    )
    users = relationship("User", secondary=role_user, back_populates="roles")

    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    def permission_names(self) -> List[str]:
        return sorted(p.name for p in self.permissions)


class Permission(Base):
    __tablename__ = "permissions"
    __table_args__ = (Index("ix_permissions_resource_action", "resource", "action"),)

    id = Column(Integer, primary_key=True)
    resource = Column(String(100), nullable=False)
    action = Column(String(50), nullable=False)
    name = Column(String(200), unique=True, nullable=False, index=True)
    description = Column(Text)

    roles = relationship("Role", secondary=permission_role, back_populates="permissions")
    policies = relationship(
        "PermissionPolicy",
        back_populates="permission",
        cascade="all, delete-orphan",
        order_by=lambda: [PermissionPolicy.priority.desc(), PermissionPolicy.id],
    )
    field_restrictions = relationship(
        "FieldRestriction",
        back_populates="permission",
        cascade="all, delete-orphan",
        order_by=lambda: FieldRestriction.id,
    )

    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    def has_policies(self) -> bool:
        return bool(self.policies)

    def has_field_restrictions(self) -> bool:
        return bool(self.field_restrictions)

    def restricted_fields(self) -> List[str]:
        return [r.field_name for r in self.field_restrictions]


class PermissionPolicy(Base):
    """
    One admissible record-level rule for a permission.

    Sibling policies are OR-combined; `priority` (higher first) orders
    evaluation and display only.
    """

    __tablename__ = "permission_policies"

    id = Column(Integer, primary_key=True)
    permission_id = Column(
        Integer,
        ForeignKey("permissions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    policy_type = Column(String(50), nullable=False, index=True)
    conditions = Column(JSON, nullable=False, default=dict)
    priority = Column(Integer, nullable=False, default=0)

    permission = relationship("Permission", back_populates="policies")

    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    @validates("policy_type")
    def _validate_policy_type(self, _key, value):
        return PolicyType.parse(value).value

    @property
    def type(self) -> PolicyType:
        return PolicyType(self.policy_type)


class FieldRestriction(Base):
    __tablename__ = "field_restrictions"
    __table_args__ = (
        UniqueConstraint(
            "permission_id", "field_name", "restriction_type", name="uq_field_restriction"
        ),
    )

    id = Column(Integer, primary_key=True)
    permission_id = Column(
        Integer,
        ForeignKey("permissions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    field_name = Column(String(100), nullable=False, index=True)
    restriction_type = Column(String(20), nullable=False)
    mask_pattern = Column(String(50), nullable=True)

    permission = relationship("Permission", back_populates="field_restrictions")

    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    @validates("restriction_type")
    def _validate_restriction_type(self, _key, value):
        return RestrictionType.parse(value).value

    @property
    def type(self) -> RestrictionType:
        return RestrictionType(self.restriction_type)

    @property
    def effective_mask_pattern(self) -> str:
        return self.mask_pattern or DEFAULT_MASK_PATTERN
