"""
Query Scope Applier.

Translates permission policies into SQLAlchemy WHERE clauses so that list
endpoints only ever load rows the actor may see. The translation mirrors
`conditions.evaluate`: a row is selected iff `PolicyEngine.authorize`
admits it.

Works on both 2.0-style `Select` and legacy `Query` objects.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional, TypeVar

from sqlalchemy import String, and_, false, inspection, or_, select, true
from sqlalchemy.sql.elements import ColumnElement

from tessera.exceptions import MisconfiguredError
from tessera.security.rbac.actor import Actor
from tessera.security.rbac.conditions import (
    AllOf,
    AnyOf,
    Condition,
    FieldCondition,
    Operator,
    normalize_policy_conditions,
    parse_condition,
    resolve_value,
    type_kind,
    value_kind,
)
from tessera.security.rbac.registry import PermissionRegistry

logger = logging.getLogger(__name__)

Q = TypeVar("Q")


def resource_for(model) -> str:
    """Permission resource guarded by a model: `__permission_resource__` or its table name."""
    return getattr(model, "__permission_resource__", None) or model.__tablename__


def query_model(query: Any):
    """First entity selected by a `Select` or `Query`."""
    descriptions = query.column_descriptions
    if not descriptions or descriptions[0].get("entity") is None:
        raise MisconfiguredError("Cannot determine the model of the query to scope")
    return descriptions[0]["entity"]


def _column(model, field: str):
    mapper = inspection.inspect(model)
    if field not in mapper.columns:
        return None
    return getattr(model, field)


def _is_string_column(model, field: str) -> bool:
    return isinstance(inspection.inspect(model).columns[field].type, String)


def _column_python_type(model, field: str) -> Optional[type]:
    try:
        return inspection.inspect(model).columns[field].type.python_type
    except NotImplementedError:
        return None


def field_predicate(model, node: FieldCondition, actor: Optional[Actor], now=None) -> ColumnElement:
    column = _column(model, node.field)
    if column is None:
        logger.warning(
            "Policy references unknown column %s.%s; branch selects nothing",
            model.__name__,
            node.field,
        )
        return false()

    op = node.operator
    if op is Operator.is_null:
        return column.is_(None)
    if op is Operator.is_not_null:
        return column.is_not(None)

    value = resolve_value(node.value, actor, now)
    if value is None:
        return false()

    # Literals of another kind than the column never match; the database
    # would otherwise coerce them by type affinity.
    python_type = _column_python_type(model, node.field)
    if python_type is None:
        logger.warning(
            "Column %s.%s has no comparable Python type; branch selects nothing",
            model.__name__,
            node.field,
        )
        return false()
    kind = type_kind(python_type)

    if op in (Operator.in_, Operator.not_in):
        if not isinstance(value, (list, tuple)):
            return false()
        if op is Operator.not_in and any(v is None for v in value):
            return false()
        members = [v for v in value if v is not None and value_kind(v) == kind]
        if op is Operator.in_:
            return column.in_(members)
        # NULL NOT IN () is true in SQL; the evaluator denies None.
        return and_(column.is_not(None), column.not_in(members))

    if value_kind(value) != kind:
        return false()

    if op is Operator.strict_equals:
        if type(value) is not python_type:
            return false()
        return column == value
    if op is Operator.equals:
        return column == value
    if op is Operator.not_equals:
        return column != value
    if op is Operator.greater_than:
        return column > value
    if op is Operator.greater_than_or_equal:
        return column >= value
    if op is Operator.less_than:
        return column < value
    if op is Operator.less_than_or_equal:
        return column <= value

    # String tests only apply to text columns and text values.
    if not isinstance(value, str) or not _is_string_column(model, node.field):
        return false()
    if op is Operator.contains:
        return column.contains(value, autoescape=True)
    if op is Operator.like:
        return column.like(f"%{value}%")
    if op is Operator.starts_with:
        return column.startswith(value, autoescape=True)
    if op is Operator.ends_with:
        return column.endswith(value, autoescape=True)

    return false()


def condition_predicate(
    model, node: Condition, actor: Optional[Actor], now: Optional[datetime] = None
) -> ColumnElement:
    if isinstance(node, AllOf):
        if not node.conditions:
            return true()
        return and_(*[condition_predicate(model, c, actor, now) for c in node.conditions])
    if isinstance(node, AnyOf):
        if not node.conditions:
            return false()
        return or_(*[condition_predicate(model, c, actor, now) for c in node.conditions])
    return field_predicate(model, node, actor, now)


class QueryScope:
    def __init__(self, registry: PermissionRegistry):
        self.registry = registry

    def build_predicate(
        self,
        model,
        condition: Any,
        actor: Optional[Actor],
        *,
        now: Optional[datetime] = None,
    ) -> ColumnElement:
        """SQL predicate for one raw condition tree; malformed trees select nothing."""
        try:
            tree = parse_condition(condition)
        except MisconfiguredError as exc:
            logger.warning("Malformed policy condition in query scope: %s", exc.message)
            return false()
        return condition_predicate(model, tree, actor, now)

    def scope(
        self,
        actor: Optional[Actor],
        permission_name: str,
        query: Q,
        model=None,
        *,
        now: Optional[datetime] = None,
    ) -> Q:
        """
        Restrict `query` to rows `actor` may access under `permission_name`.

        - no base permission: zero rows (never an error)
        - no policies: unchanged
        - otherwise: OR of every policy predicate
        """
        if actor is None or not self.registry.has_permission(actor, permission_name):
            return query.filter(false())

        policies = self.registry.policies_for(permission_name)
        if not policies:
            return query

        model = model or query_model(query)
        predicates = [
            self.build_predicate(
                model,
                normalize_policy_conditions(p.policy_type, p.conditions),
                actor,
                now=now,
            )
            for p in policies
        ]
        return query.filter(or_(*predicates))

    def for_actor(self, model, actor: Optional[Actor], action: str = "view"):
        """`select(model)` scoped by `<resource>.<action>`."""
        name = f"{resource_for(model)}.{action}".lower()
        return self.scope(actor, name, select(model), model)

    @staticmethod
    def _equals_actor(query: Q, model, field: str, value: Any) -> Q:
        column = _column(model, field)
        if column is None or value is None:
            return query.filter(false())
        return query.filter(column == value)

    def owned_by(self, query: Q, actor: Optional[Actor], field: str = "user_id", model=None) -> Q:
        model = model or query_model(query)
        return self._equals_actor(query, model, field, actor.id if actor else None)

    def in_team(self, query: Q, actor: Optional[Actor], field: str = "team_id", model=None) -> Q:
        model = model or query_model(query)
        return self._equals_actor(query, model, field, actor.get("team_id") if actor else None)

    def in_department(
        self, query: Q, actor: Optional[Actor], field: str = "department_id", model=None
    ) -> Q:
        model = model or query_model(query)
        return self._equals_actor(
            query, model, field, actor.get("department_id") if actor else None
        )
