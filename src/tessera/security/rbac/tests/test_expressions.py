from __future__ import annotations

import pytest

from tessera.exceptions import MisconfiguredError
from tessera.security.rbac.actor import Actor
from tessera.security.rbac.expressions import Combinator, parse_permission_expression


def _actor(*permissions):
    return Actor.from_attributes({"id": 1}, permissions=permissions)


def test_single_permission():
    expr = parse_permission_expression("posts.view")
    assert expr.combinator is Combinator.single
    assert expr.names == ("posts.view",)
    assert expr.is_satisfied_by(_actor("posts.view")) is True
    assert expr.is_satisfied_by(_actor("posts.create")) is False


def test_any_of():
    expr = parse_permission_expression("posts.update | posts.delete")
    assert expr.combinator is Combinator.any
    assert expr.is_satisfied_by(_actor("posts.delete")) is True
    assert expr.is_satisfied_by(_actor("posts.view")) is False
    assert expr.required == "posts.update|posts.delete"


def test_all_of():
    expr = parse_permission_expression("reports.view&reports.export")
    assert expr.combinator is Combinator.all
    assert expr.is_satisfied_by(_actor("reports.view", "reports.export")) is True
    assert expr.is_satisfied_by(_actor("reports.view")) is False


def test_prefix_and_case_are_normalized():
    expr = parse_permission_expression("permission:Posts.View")
    assert expr.names == ("posts.view",)


def test_anonymous_never_satisfies():
    assert parse_permission_expression("posts.view").is_satisfied_by(None) is False


@pytest.mark.parametrize("raw", ["a.b&c.d|e.f", "", "permission:", "a.b|", "&a.b"])
def test_invalid_expressions_rejected(raw):
    with pytest.raises(MisconfiguredError):
        parse_permission_expression(raw)
