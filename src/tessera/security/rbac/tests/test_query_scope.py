from __future__ import annotations

import pytest
from hypothesis import HealthCheck, given, settings, strategies as st
from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from tessera.database import create_db_engine, init_db
from tessera.models.post import Post
from tessera.models.user import User
from tessera.security.rbac.actor import Actor
from tessera.security.rbac.models import PermissionPolicy
from tessera.security.rbac.policy_engine import PolicyEngine
from tessera.security.rbac.query_scope import QueryScope, query_model, resource_for
from tessera.security.rbac.registry import PermissionRegistry


def _open_session():
    engine = create_db_engine("sqlite:///:memory:")
    init_db(create_tables=True, bind_engine=engine)
    SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)
    return engine, SessionLocal()


@pytest.fixture()
def session():
    engine, db = _open_session()
    try:
        yield db
    finally:
        db.close()
        engine.dispose()


@pytest.fixture()
def registry(session):
    registry = PermissionRegistry(session)
    registry.create_or_get_permission("posts", "view")
    registry.create_or_get_permission("posts", "delete")
    return registry


@pytest.fixture()
def scope(registry):
    return QueryScope(registry)


@pytest.fixture()
def posts(session):
    session.add_all([User(id=i, username=f"u{i}") for i in (1, 2, 3)])
    session.flush()
    rows = [
        Post(id=1, title="Mine", user_id=1, team_id=10, department_id=100, status="draft"),
        Post(id=2, title="Team mate", user_id=2, team_id=10, department_id=100, status="published"),
        Post(id=3, title="Other team", user_id=3, team_id=20, department_id=100, status="published"),
        Post(id=4, title="Orphan", user_id=None, team_id=None, department_id=None, status="draft"),
    ]
    session.add_all(rows)
    session.flush()
    return rows


def _ids(session, stmt):
    return sorted(session.execute(stmt).scalars().unique().all(), key=lambda p: p.id)


def _actor(actor_id=1, team_id=10, department_id=100, permissions=("posts.view",)):
    return Actor.from_attributes(
        {"id": actor_id, "team_id": team_id, "department_id": department_id},
        permissions=permissions,
    )


def test_without_base_permission_no_rows(session, scope, posts):
    stmt = scope.scope(_actor(permissions=()), "posts.view", select(Post))
    assert _ids(session, stmt) == []
    assert _ids(session, scope.scope(None, "posts.view", select(Post))) == []


def test_without_policies_query_unchanged(session, scope, posts):
    query = select(Post)
    assert scope.scope(_actor(), "posts.view", query) is query
    assert [p.id for p in _ids(session, query)] == [1, 2, 3, 4]


def test_policies_are_or_ed(session, registry, scope, posts):
    registry.add_ownership_policy("posts.view")
    registry.add_custom_policy("posts.view", {"field": "status", "value": "published"})

    stmt = scope.scope(_actor(actor_id=1), "posts.view", select(Post))
    assert [p.id for p in _ids(session, stmt)] == [1, 2, 3]


def test_null_actor_team_contributes_no_rows(session, registry, scope, posts):
    registry.add_team_policy("posts.view")
    stmt = scope.scope(_actor(team_id=None), "posts.view", select(Post))
    assert _ids(session, stmt) == []


def test_team_policy_matches_rows_and_engine(session, registry, scope, posts):
    registry.add_team_policy("posts.view")
    actor = _actor(team_id=10)
    selected = [p.id for p in _ids(session, scope.scope(actor, "posts.view", select(Post)))]
    engine = PolicyEngine(registry)
    assert selected == [p.id for p in posts if engine.authorize(actor, "posts.view", p)] == [1, 2]


def test_legacy_query_is_supported(session, registry, scope, posts):
    registry.add_ownership_policy("posts.view")
    query = scope.scope(_actor(actor_id=2), "posts.view", session.query(Post))
    assert [p.id for p in query.all()] == [2]


def test_for_actor_uses_model_resource(session, registry, scope, posts):
    registry.add_department_policy("posts.delete")
    actor = _actor(department_id=100, permissions=("posts.delete",))
    stmt = scope.for_actor(Post, actor, "delete")
    assert [p.id for p in _ids(session, stmt)] == [1, 2, 3]
    assert _ids(session, scope.for_actor(Post, actor)) == []


def test_convenience_scopes(session, scope, posts):
    actor = _actor(actor_id=3, team_id=10, department_id=None)
    assert [p.id for p in _ids(session, scope.owned_by(select(Post), actor))] == [3]
    assert [p.id for p in _ids(session, scope.in_team(select(Post), actor))] == [1, 2]
    assert _ids(session, scope.in_department(select(Post), actor)) == []
    assert _ids(session, scope.in_team(select(Post), actor, field="nope")) == []


def test_unknown_column_selects_nothing(session, registry, scope, posts):
    registry.add_custom_policy("posts.view", {"field": "region", "value": "eu"})
    assert _ids(session, scope.scope(_actor(), "posts.view", select(Post))) == []


def test_stored_unknown_operator_denies_on_both_sides(session, registry, scope, posts):
    permission = registry.find_permission("posts.view")
    session.add(
        PermissionPolicy(
            permission_id=permission.id,
            policy_type="custom",
            conditions={"field": "status", "operator": "regex", "value": ".*"},
            priority=50,
        )
    )
    session.flush()
    registry.clear_permission_cache()

    actor = _actor()
    assert _ids(session, scope.scope(actor, "posts.view", select(Post))) == []
    assert PolicyEngine(registry).authorize(actor, "posts.view", posts[0]) is False


def test_like_operators_are_case_sensitive_and_escaped(session, registry, scope, posts):
    session.add(Post(id=5, title="50% off", status="published"))
    session.add(Post(id=6, title="500 off", status="published"))
    session.flush()
    registry.add_custom_policy(
        "posts.view",
        {"or": [
            {"field": "title", "operator": "contains", "value": "mate"},
            {"field": "title", "operator": "starts_with", "value": "50%"},
        ]},
    )
    stmt = scope.scope(_actor(), "posts.view", select(Post))
    assert [p.id for p in _ids(session, stmt)] == [2, 5]

    registry.clear_permission_cache()
    registry.add_custom_policy("posts.view", {"field": "title", "operator": "contains", "value": "MINE"})
    stmt = scope.scope(_actor(), "posts.view", select(Post))
    assert [p.id for p in _ids(session, stmt)] == [2, 5]


@pytest.mark.parametrize(
    "condition,expected_ids",
    [
        ({"field": "user_id", "operator": "equals", "value": "1"}, []),
        ({"field": "team_id", "operator": "greater_than", "value": "5"}, []),
        ({"field": "user_id", "operator": "strict_equals", "value": 1.0}, []),
        ({"field": "user_id", "operator": "strict_equals", "value": 1}, [1]),
        ({"field": "user_id", "operator": "equals", "value": 1.0}, [1]),
        ({"field": "user_id", "operator": "equals", "value": True}, []),
        ({"field": "status", "operator": "equals", "value": 0}, []),
        ({"field": "team_id", "operator": "in", "value": ["10", 20.0]}, [3]),
        ({"field": "team_id", "operator": "not_in", "value": ["10"]}, [1, 2, 3]),
    ],
)
def test_literals_of_another_kind_agree_with_engine(
    session, registry, scope, posts, condition, expected_ids
):
    registry.add_custom_policy("posts.view", condition)
    actor = _actor()
    selected = [p.id for p in _ids(session, scope.scope(actor, "posts.view", select(Post)))]
    engine = PolicyEngine(registry)
    assert selected == [p.id for p in posts if engine.authorize(actor, "posts.view", p)]
    assert selected == expected_ids


def test_helpers(session):
    assert resource_for(Post) == "posts"
    assert resource_for(User) == "users"
    assert query_model(select(Post)) is Post


# ---------------------------------------------------------------------------
# Row evaluation and SQL scoping agree on arbitrary trees.
# ---------------------------------------------------------------------------

INT_FIELDS = ("user_id", "team_id", "department_id", "published_at")
STR_FIELDS = ("status", "title")
PLACEHOLDERS = ("{auth.id}", "{auth.team_id}", "{auth.department_id}")

small_int = st.integers(min_value=0, max_value=3)
maybe_int = st.one_of(st.none(), small_int)
# Literals of other kinds: numeric strings, floats and bools on integer
# columns, numbers on text columns.
foreign_int_literal = st.sampled_from(["1", "2", 1.0, 2.5, True, False])
foreign_str_literal = st.sampled_from([0, 1, 2.5, True])
int_value = st.one_of(small_int, st.none(), st.sampled_from(PLACEHOLDERS), foreign_int_literal)
str_value = st.one_of(
    st.none(),
    st.sampled_from(["draft", "published", "Draft", "pub", "50%", "a_b", "he", "lo"]),
    foreign_str_literal,
)
like_value = st.sampled_from(["ell", "Hel", "o w", "x"])

int_leaf = st.one_of(
    st.builds(
        lambda f, op, v: {"field": f, "operator": op, "value": v},
        st.sampled_from(INT_FIELDS),
        st.sampled_from(["equals", "not_equals", "greater_than", "greater_than_or_equal",
                         "less_than", "less_than_or_equal", "strict_equals"]),
        int_value,
    ),
    st.builds(
        lambda f, op, v: {"field": f, "operator": op, "value": v},
        st.sampled_from(INT_FIELDS),
        st.sampled_from(["in", "not_in"]),
        st.lists(st.one_of(maybe_int, foreign_int_literal), max_size=3),
    ),
    st.builds(
        lambda f, v: {"field": f, "operator": "contains", "value": v},
        st.sampled_from(INT_FIELDS),
        st.sampled_from(["1", "2"]),
    ),
)
str_leaf = st.one_of(
    st.builds(
        lambda f, op, v: {"field": f, "operator": op, "value": v},
        st.sampled_from(STR_FIELDS),
        st.sampled_from(["equals", "not_equals", "contains", "starts_with", "ends_with",
                         "greater_than", "less_than"]),
        str_value,
    ),
    st.builds(
        lambda f, v: {"field": f, "operator": "like", "value": v},
        st.sampled_from(STR_FIELDS),
        like_value,
    ),
    st.builds(
        lambda f, op, v: {"field": f, "operator": op, "value": v},
        st.sampled_from(STR_FIELDS),
        st.sampled_from(["in", "not_in"]),
        st.lists(
            st.one_of(st.none(), st.sampled_from(["draft", "published"]), foreign_str_literal),
            max_size=3,
        ),
    ),
)
null_leaf = st.builds(
    lambda f, op: {"field": f, "operator": op},
    st.sampled_from(INT_FIELDS + STR_FIELDS + ("missing",)),
    st.sampled_from(["is_null", "is_not_null"]),
)
leaf = st.one_of(int_leaf, str_leaf, null_leaf)
trees = st.recursive(
    leaf,
    lambda children: st.one_of(
        st.builds(lambda cs: {"and": cs}, st.lists(children, max_size=3)),
        st.builds(lambda cs: {"or": cs}, st.lists(children, max_size=3)),
    ),
    max_leaves=6,
)
post_rows = st.lists(
    st.fixed_dictionaries(
        {
            "user_id": st.one_of(st.none(), st.integers(min_value=1, max_value=3)),
            "team_id": maybe_int,
            "department_id": maybe_int,
            "published_at": maybe_int,
            "status": st.one_of(st.none(), st.sampled_from(["draft", "published", "Draft"])),
            "title": st.sampled_from(["Hello", "hello world", "50% off", "a_b", "x"]),
        }
    ),
    max_size=6,
)
actors = st.builds(
    lambda actor_id, team_id, department_id, granted: Actor.from_attributes(
        {"id": actor_id, "team_id": team_id, "department_id": department_id},
        permissions=("posts.view",) if granted else (),
    ),
    st.integers(min_value=1, max_value=3),
    maybe_int,
    maybe_int,
    st.booleans(),
)


@pytest.mark.property
@settings(max_examples=75, deadline=None, suppress_health_check=[HealthCheck.too_slow])
@given(policies=st.lists(trees, max_size=3), rows=post_rows, actor=actors)
def test_authorize_agrees_with_scope(policies, rows, actor):
    engine, db = _open_session()
    try:
        db.add_all([User(id=i, username=f"u{i}") for i in (1, 2, 3)])
        db.flush()
        db.add_all([Post(**row) for row in rows])
        db.flush()

        registry = PermissionRegistry(db)
        registry.create_or_get_permission("posts", "view")
        for tree in policies:
            registry.add_custom_policy("posts.view", tree)

        all_posts = db.execute(select(Post).order_by(Post.id)).scalars().all()
        policy_engine = PolicyEngine(registry)
        admitted = {p.id for p in all_posts if policy_engine.authorize(actor, "posts.view", p)}
        scoped = QueryScope(registry).scope(actor, "posts.view", select(Post))
        selected = {p.id for p in db.execute(scoped).scalars().all()}

        assert admitted == selected
    finally:
        db.close()
        engine.dispose()
