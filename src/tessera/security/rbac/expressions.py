"""
Permission expressions used by route guards.

    "posts.view"                 single permission
    "posts.update|posts.delete"  any of
    "reports.view&reports.export" all of

An optional `permission:` prefix is accepted. Mixing `&` and `|` in one
expression is rejected when the expression is parsed.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional, Tuple

from tessera.exceptions import MisconfiguredError
from tessera.security.rbac.actor import Actor

PREFIX = "permission:"


class Combinator(str, enum.Enum):
    single = "single"
    any = "any"
    all = "all"


@dataclass(frozen=True)
class PermissionExpression:
    source: str
    names: Tuple[str, ...]
    combinator: Combinator = Combinator.single

    def is_satisfied_by(self, actor: Optional[Actor]) -> bool:
        if actor is None:
            return False
        snapshot = actor.permissions
        if self.combinator is Combinator.any:
            return any(snapshot.has(n) for n in self.names)
        return all(snapshot.has(n) for n in self.names)

    @property
    def required(self) -> str:
        """Permission reported back in a 403 response."""
        joiner = "|" if self.combinator is Combinator.any else "&"
        return joiner.join(self.names)


def parse_permission_expression(expression: str) -> PermissionExpression:
    raw = (expression or "").strip()
    body = raw[len(PREFIX):].strip() if raw.lower().startswith(PREFIX) else raw
    if not body:
        raise MisconfiguredError("Permission expression must not be empty")

    has_and = "&" in body
    has_or = "|" in body
    if has_and and has_or:
        raise MisconfiguredError(
            f"Permission expression mixes '&' and '|': {expression!r}",
            expression=expression,
        )

    if has_or:
        combinator, parts = Combinator.any, body.split("|")
    elif has_and:
        combinator, parts = Combinator.all, body.split("&")
    else:
        combinator, parts = Combinator.single, [body]

    names = tuple(p.strip().lower() for p in parts)
    if any(not n for n in names):
        raise MisconfiguredError(
            f"Permission expression has an empty operand: {expression!r}",
            expression=expression,
        )
    return PermissionExpression(source=expression, names=names, combinator=combinator)
