from __future__ import annotations

import pytest
from sqlalchemy.orm import sessionmaker

from tessera.database import create_db_engine, init_db
from tessera.exceptions import ForbiddenError
from tessera.models.user import User
from tessera.security.rbac.actor import Actor
from tessera.security.rbac.policy_engine import PolicyEngine
from tessera.security.rbac.registry import PermissionRegistry


@pytest.fixture()
def session():
    engine = create_db_engine("sqlite:///:memory:")
    init_db(create_tables=True, bind_engine=engine)
    SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
        engine.dispose()


@pytest.fixture()
def registry(session):
    return PermissionRegistry(session)


@pytest.fixture()
def engine(registry):
    return PolicyEngine(registry)


def _actor(registry, session, role_slug, *, user_id=5, team_id=None, department_id=None):
    user = User(id=user_id, username=f"u{user_id}", team_id=team_id, department_id=department_id)
    session.add(user)
    session.flush()
    registry.assign_role(user, role_slug)
    return registry.build_actor(user)


def _role_with(registry, slug, *names):
    registry.create_role(slug.title(), slug)
    for name in names:
        resource, action = name.split(".")
        registry.create_or_get_permission(resource, action)
        registry.grant_permission_to_role(slug, name)


def test_ownership_policy_on_update(registry, session, engine):
    _role_with(registry, "user", "posts.update")
    registry.add_ownership_policy("posts.update")
    actor = _actor(registry, session, "user", user_id=5)

    assert engine.authorize(actor, "posts.update", {"user_id": 5}) is True
    assert engine.authorize(actor, "posts.update", {"user_id": 9}) is False


def test_no_policies_reduces_to_base_permission(registry, session, engine):
    _role_with(registry, "manager", "reports.export")
    actor = _actor(registry, session, "manager")

    assert engine.authorize(actor, "reports.export", {"anything": 1}) is True
    assert engine.authorize(actor, "reports.export", {}) is True
    assert engine.authorize(actor, "reports.view", {"anything": 1}) is False


def test_missing_base_permission_denies_even_if_policy_matches(registry, session, engine):
    _role_with(registry, "user", "posts.view")
    registry.create_or_get_permission("posts", "delete")
    registry.add_ownership_policy("posts.delete")
    actor = _actor(registry, session, "user", user_id=5)

    assert engine.authorize(actor, "posts.delete", {"user_id": 5}) is False


def test_policies_are_or_combined(registry, session, engine):
    _role_with(registry, "user", "posts.delete")
    registry.add_ownership_policy("posts.delete")
    registry.add_team_policy("posts.delete")
    actor = _actor(registry, session, "user", user_id=5, team_id=3)

    # other owner, same team
    assert engine.authorize(actor, "posts.delete", {"user_id": 9, "team_id": 3}) is True
    assert engine.authorize(actor, "posts.delete", {"user_id": 5, "team_id": 4}) is True
    assert engine.authorize(actor, "posts.delete", {"user_id": 9, "team_id": 4}) is False


def test_priority_never_changes_outcome(registry, session, engine):
    _role_with(registry, "user", "posts.delete")
    registry.add_ownership_policy("posts.delete", priority=1)
    registry.add_team_policy("posts.delete", priority=500)
    actor = _actor(registry, session, "user", user_id=5, team_id=3)

    assert engine.authorize(actor, "posts.delete", {"user_id": 5, "team_id": 4}) is True
    assert engine.authorize(actor, "posts.delete", {"user_id": 9, "team_id": 3}) is True
    assert engine.authorize(actor, "posts.delete", {"user_id": 9, "team_id": 4}) is False


def test_null_actor_team_never_matches_team_policy(registry, session, engine):
    _role_with(registry, "user", "posts.view")
    registry.add_team_policy("posts.view")
    actor = _actor(registry, session, "user", team_id=None)

    assert engine.authorize(actor, "posts.view", {"team_id": None}) is False
    assert engine.authorize(actor, "posts.view", {"team_id": 1}) is False


def test_record_none_is_table_level_check(registry, session, engine):
    _role_with(registry, "user", "posts.update")
    registry.add_ownership_policy("posts.update")
    actor = _actor(registry, session, "user")

    assert engine.authorize(actor, "posts.update") is True
    assert engine.authorize(actor, "posts.delete") is False
    assert engine.authorize(None, "posts.update") is False


def test_custom_policy_with_placeholders(registry, session, engine):
    _role_with(registry, "user", "posts.view")
    registry.add_custom_policy(
        "posts.view",
        {
            "or": [
                {"field": "status", "operator": "equals", "value": "published"},
                {"field": "user_id", "operator": "equals", "value": "{auth.id}"},
            ]
        },
    )
    actor = _actor(registry, session, "user", user_id=5)

    assert engine.authorize(actor, "posts.view", {"status": "published", "user_id": 1}) is True
    assert engine.authorize(actor, "posts.view", {"status": "draft", "user_id": 5}) is True
    assert engine.authorize(actor, "posts.view", {"status": "draft", "user_id": 1}) is False


def test_authorize_all_and_any(registry, session, engine):
    _role_with(registry, "user", "posts.view", "posts.create")
    actor = _actor(registry, session, "user")

    assert engine.authorize_all(actor, ["posts.view", "posts.create"]) is True
    assert engine.authorize_all(actor, ["posts.view", "posts.delete"]) is False
    assert engine.authorize_any(actor, ["posts.delete", "posts.view"]) is True
    assert engine.authorize_any(actor, ["posts.delete"]) is False


def test_ensure_authorized_raises_forbidden_with_permission_only(registry, session, engine):
    _role_with(registry, "user", "posts.update")
    registry.add_ownership_policy("posts.update")
    actor = _actor(registry, session, "user", user_id=5)

    engine.ensure_authorized(actor, "posts.update", {"user_id": 5})
    with pytest.raises(ForbiddenError) as excinfo:
        engine.ensure_authorized(actor, "posts.update", {"user_id": 9, "secret": "x"})

    assert excinfo.value.status_code == 403
    assert excinfo.value.details == {"required_permission": "posts.update"}


def test_actor_without_database_snapshot(registry, engine):
    registry.create_or_get_permission("posts", "view")
    actor = Actor.from_attributes({"id": 1}, permissions=["posts.view"])
    assert engine.authorize(actor, "posts.view", {"id": 3}) is True
