"""
Policy condition evaluator.

Condition trees are plain JSON stored on `PermissionPolicy.conditions`:

    {"field": "user_id", "operator": "equals", "value": "{auth.id}"}
    {"and": [<condition>, ...]}
    {"or": [<condition>, ...]}

Supported value placeholders are exactly `{auth.<attr>}`, `{now}` and
`{today}`; any other string is a literal.

Comparison semantics are shared with `query_scope` so that a record passes
`evaluate` iff the equivalent SQL predicate selects its row:

- a field the record does not carry fails closed;
- every operator except `is_null` / `is_not_null` is False when either
  operand is None (SQL three-valued logic);
- operands of different kinds (number, text, bool, date, datetime) never
  match, so `"5"` is not equal to `5`; `in` / `not_in` ignore list members
  of another kind;
- `contains` / `like` / `starts_with` / `ends_with` are case-sensitive.

`evaluate` never raises. Malformed trees, unknown operators and comparison
errors deny and log a warning.
"""

from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional, Tuple, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from tessera.config import get_settings
from tessera.exceptions import MisconfiguredError
from tessera.security.rbac.actor import Actor
from tessera.security.rbac.models import PolicyType

logger = logging.getLogger(__name__)


class Operator(str, enum.Enum):
    equals = "equals"
    strict_equals = "strict_equals"
    not_equals = "not_equals"
    greater_than = "greater_than"
    greater_than_or_equal = "greater_than_or_equal"
    less_than = "less_than"
    less_than_or_equal = "less_than_or_equal"
    in_ = "in"
    not_in = "not_in"
    contains = "contains"
    like = "like"
    starts_with = "starts_with"
    ends_with = "ends_with"
    is_null = "is_null"
    is_not_null = "is_not_null"

    @classmethod
    def parse(cls, raw: Any) -> "Operator":
        if isinstance(raw, Operator):
            return raw
        key = str(raw).strip()
        key = _OPERATOR_ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise MisconfiguredError(f"Unknown operator: {raw!r}", operator=str(raw)) from None


_OPERATOR_ALIASES: Dict[str, str] = {
    "=": "equals",
    "==": "equals",
    "===": "strict_equals",
    "!=": "not_equals",
    "<>": "not_equals",
    ">": "greater_than",
    ">=": "greater_than_or_equal",
    "<": "less_than",
    "<=": "less_than_or_equal",
}

NULL_TESTS = frozenset({Operator.is_null, Operator.is_not_null})
LIST_OPERATORS = frozenset({Operator.in_, Operator.not_in})
STRING_OPERATORS = frozenset(
    {Operator.contains, Operator.like, Operator.starts_with, Operator.ends_with}
)


@dataclass(frozen=True)
class FieldCondition:
    field: str
    operator: Operator
    value: Any = None


@dataclass(frozen=True)
class AllOf:
    conditions: Tuple["Condition", ...]


@dataclass(frozen=True)
class AnyOf:
    conditions: Tuple["Condition", ...]


Condition = Union[FieldCondition, AllOf, AnyOf]

# Defaults recovered for typed policies whose stored tree is incomplete.
POLICY_DEFAULTS: Dict[PolicyType, Dict[str, Any]] = {
    PolicyType.ownership: {"field": "user_id", "operator": "equals", "value": "{auth.id}"},
    PolicyType.team: {"field": "team_id", "operator": "equals", "value": "{auth.team_id}"},
    PolicyType.department: {
        "field": "department_id",
        "operator": "equals",
        "value": "{auth.department_id}",
    },
}

DEFAULT_POLICY_PRIORITY: Dict[PolicyType, int] = {
    PolicyType.ownership: 100,
    PolicyType.team: 80,
    PolicyType.department: 60,
    PolicyType.custom: 50,
}


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def parse_condition(raw: Any) -> Condition:
    """Parse a JSON condition tree, raising `MisconfiguredError` when malformed."""
    if isinstance(raw, (FieldCondition, AllOf, AnyOf)):
        return raw
    if not isinstance(raw, Mapping):
        raise MisconfiguredError("Condition must be an object")

    keys = [k for k in ("field", "and", "or") if k in raw]
    if not keys:
        raise MisconfiguredError("Condition needs one of 'field', 'and' or 'or'")
    if len(keys) > 1:
        raise MisconfiguredError(
            "Condition mixes " + ", ".join(repr(k) for k in keys), keys=keys
        )

    if "field" in raw:
        field = raw["field"]
        if not isinstance(field, str) or not field.strip():
            raise MisconfiguredError("Condition field must be a non-empty string")
        operator = Operator.parse(raw.get("operator", Operator.equals.value))
        value = raw.get("value")
        if (
            operator in LIST_OPERATORS
            and not isinstance(value, (list, tuple))
            and not is_placeholder(value)
        ):
            raise MisconfiguredError(
                f"Operator '{operator.value}' expects a list value", field=field
            )
        return FieldCondition(field=field.strip(), operator=operator, value=value)

    key = keys[0]
    children = raw[key]
    if not isinstance(children, (list, tuple)):
        raise MisconfiguredError(f"'{key}' must hold a list of conditions")
    parsed = tuple(parse_condition(child) for child in children)
    return AllOf(parsed) if key == "and" else AnyOf(parsed)


def validate_condition(raw: Any) -> Dict[str, Any]:
    parse_condition(raw)
    return dict(raw)


def normalize_policy_conditions(
    policy_type: Union[PolicyType, str], conditions: Optional[Mapping[str, Any]]
) -> Dict[str, Any]:
    """Fill typed-policy defaults into a stored condition tree."""
    ptype = PolicyType.parse(policy_type)
    merged: Dict[str, Any] = dict(conditions or {})
    defaults = POLICY_DEFAULTS.get(ptype)
    if defaults and "and" not in merged and "or" not in merged:
        for key, value in defaults.items():
            merged.setdefault(key, value)
    return merged


def policy_condition(
    policy_type: Union[PolicyType, str], conditions: Optional[Mapping[str, Any]]
) -> Condition:
    return parse_condition(normalize_policy_conditions(policy_type, conditions))


# ---------------------------------------------------------------------------
# Placeholders
# ---------------------------------------------------------------------------

_AUTH_PLACEHOLDER = re.compile(r"^\{auth\.(.+)\}$")
NOW_PLACEHOLDER = "{now}"
TODAY_PLACEHOLDER = "{today}"


def is_placeholder(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    return value in (NOW_PLACEHOLDER, TODAY_PLACEHOLDER) or bool(
        _AUTH_PLACEHOLDER.match(value)
    )


def _tz(name: Optional[str]):
    tz_name = name or get_settings().TODAY_TIMEZONE
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r for {today}; using UTC", tz_name)
        return timezone.utc


def start_of_day(now: datetime, tz_name: Optional[str] = None) -> int:
    local = now.astimezone(_tz(tz_name))
    midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
    return int(midnight.timestamp())


def resolve_value(
    value: Any,
    actor: Optional[Actor],
    now: Optional[datetime] = None,
    *,
    tz_name: Optional[str] = None,
) -> Any:
    """Substitute `{auth.<attr>}`, `{now}` and `{today}`; everything else is literal."""
    if not isinstance(value, str):
        return value

    match = _AUTH_PLACEHOLDER.match(value)
    if match:
        if actor is None:
            return None
        return actor.get(match.group(1))

    if value == NOW_PLACEHOLDER:
        return int((now or datetime.now(timezone.utc)).timestamp())
    if value == TODAY_PLACEHOLDER:
        return start_of_day(now or datetime.now(timezone.utc), tz_name)

    return value


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------

_MISSING = object()


def field_value(record: Any, field: str) -> Any:
    """Read `field` from a mapping or attribute object; `_MISSING` when absent."""
    if isinstance(record, Mapping):
        return record[field] if field in record else _MISSING
    return getattr(record, field, _MISSING)


def type_kind(python_type: type) -> str:
    """Comparison family of a Python type; SQL column types map through `python_type`."""
    if issubclass(python_type, bool):
        return "bool"
    if issubclass(python_type, (int, float, Decimal)):
        return "number"
    if issubclass(python_type, str):
        return "text"
    if issubclass(python_type, datetime):
        return "datetime"
    if issubclass(python_type, date):
        return "date"
    return python_type.__name__


def value_kind(value: Any) -> str:
    return type_kind(type(value))


def compare(operator: Operator, left: Any, right: Any) -> bool:
    if operator is Operator.is_null:
        return left is None
    if operator is Operator.is_not_null:
        return left is not None
    if left is None or right is None:
        return False

    if operator in LIST_OPERATORS:
        if not isinstance(right, (list, tuple)):
            return False
        # NOT IN against a list holding NULL is never true in SQL
        if operator is Operator.not_in and any(v is None for v in right):
            return False
        kind = value_kind(left)
        members = [v for v in right if v is not None and value_kind(v) == kind]
        if operator is Operator.in_:
            return left in members
        return left not in members

    if value_kind(left) != value_kind(right):
        return False

    if operator is Operator.equals:
        return left == right
    if operator is Operator.strict_equals:
        return type(left) is type(right) and left == right
    if operator is Operator.not_equals:
        return left != right
    if operator is Operator.greater_than:
        return left > right
    if operator is Operator.greater_than_or_equal:
        return left >= right
    if operator is Operator.less_than:
        return left < right
    if operator is Operator.less_than_or_equal:
        return left <= right

    if operator in STRING_OPERATORS:
        if not isinstance(left, str) or not isinstance(right, str):
            return False
        if operator is Operator.starts_with:
            return left.startswith(right)
        if operator is Operator.ends_with:
            return left.endswith(right)
        # `like` is a substring test here; wildcards only apply in SQL
        return right in left

    return False


def _evaluate(node: Condition, record: Any, actor: Optional[Actor], now: Optional[datetime]) -> bool:
    if isinstance(node, AllOf):
        return all(_evaluate(child, record, actor, now) for child in node.conditions)
    if isinstance(node, AnyOf):
        return any(_evaluate(child, record, actor, now) for child in node.conditions)

    left = field_value(record, node.field)
    if left is _MISSING:
        logger.debug("Record has no field %r; condition denies", node.field)
        return False

    right = None if node.operator in NULL_TESTS else resolve_value(node.value, actor, now)
    try:
        return compare(node.operator, left, right)
    except (TypeError, ValueError) as e:
        logger.warning(
            f"Condition comparison error for field '{node.field}', "
            f"operator '{node.operator.value}': {e}"
        )
        return False


def evaluate(
    condition: Any,
    record: Any,
    actor: Optional[Actor],
    *,
    now: Optional[datetime] = None,
) -> bool:
    """Evaluate one condition tree against a record; denies on any doubt."""
    try:
        tree = parse_condition(condition)
    except MisconfiguredError as exc:
        logger.warning("Denying malformed policy condition: %s", exc.message)
        return False
    return _evaluate(tree, record, actor, now)
