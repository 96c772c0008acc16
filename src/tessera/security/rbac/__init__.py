from tessera.security.rbac.actor import Actor, PermissionSnapshot
from tessera.security.rbac.conditions import Operator, evaluate, parse_condition
from tessera.security.rbac.expressions import PermissionExpression, parse_permission_expression
from tessera.security.rbac.field_restrictor import FieldRestrictor, mask_value
from tessera.security.rbac.models import (
    FieldRestriction,
    Permission,
    PermissionPolicy,
    PolicyType,
    RestrictionType,
    Role,
)
from tessera.security.rbac.policy_engine import PolicyEngine
from tessera.security.rbac.query_scope import QueryScope
from tessera.security.rbac.registry import PermissionRegistry

__all__ = [
    "Actor",
    "FieldRestriction",
    "FieldRestrictor",
    "Operator",
    "Permission",
    "PermissionExpression",
    "PermissionPolicy",
    "PermissionRegistry",
    "PermissionSnapshot",
    "PolicyEngine",
    "PolicyType",
    "QueryScope",
    "RestrictionType",
    "Role",
    "evaluate",
    "mask_value",
    "parse_condition",
    "parse_permission_expression",
]
