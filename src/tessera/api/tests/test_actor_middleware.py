from __future__ import annotations

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from tessera.api.dependencies.auth import RequirePermission, get_current_actor_optional
from tessera.api.middleware.actor_context import ActorContextMiddleware
from tessera.config import get_settings
from tessera.context import get_current_actor
from tessera.database import create_db_engine, init_db
from tessera.exceptions import MisconfiguredError
from tessera.models.user import User
from tessera.security.auth.jwt import build_access_token_payload, encode_hs256
from tessera.security.rbac.registry import PermissionRegistry


def _headers(user_id, secret=None):
    token = encode_hs256(
        build_access_token_payload(user_id=user_id, ttl_seconds=60),
        secret=secret or get_settings().JWT_SECRET_KEY,
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def client():
    engine = create_db_engine("sqlite:///:memory:")
    init_db(create_tables=True, bind_engine=engine)
    SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)

    db = SessionLocal()
    registry = PermissionRegistry(db)
    registry.create_role("Reporter", "reporter")
    for action in ("view", "export"):
        registry.create_or_get_permission("reports", action)
    registry.grant_permission_to_role("reporter", "reports.view")
    db.add_all(
        [
            User(id=1, username="active", team_id=7),
            User(id=2, username="inactive", is_active=False),
        ]
    )
    db.flush()
    registry.assign_role(1, "reporter")
    registry.assign_role(2, "reporter")
    db.commit()
    db.close()

    app = FastAPI()
    app.add_middleware(ActorContextMiddleware, session_factory=SessionLocal)

    @app.get("/whoami")
    async def whoami(actor=Depends(get_current_actor_optional)):
        if actor is None:
            return {"actor": None}
        ctx_actor = get_current_actor()
        return {
            "actor": actor.id,
            "team_id": actor.get("team_id"),
            "roles": sorted(actor.roles),
            "context_matches": ctx_actor is not None and ctx_actor.id == actor.id,
        }

    @app.get("/reports")
    def reports(actor=Depends(RequirePermission("reports.view"))):
        return {"ok": True}

    @app.get("/reports/export")
    def export(actor=Depends(RequirePermission("reports.view&reports.export"))):
        return {"ok": True}

    @app.get("/reports/any")
    def any_report(actor=Depends(RequirePermission("permission:reports.export|reports.view"))):
        return {"ok": True}

    try:
        yield TestClient(app)
    finally:
        engine.dispose()


def test_valid_token_builds_actor(client):
    body = client.get("/whoami", headers=_headers(1)).json()
    assert body == {"actor": 1, "team_id": 7, "roles": ["reporter"], "context_matches": True}


@pytest.mark.parametrize(
    "headers",
    [
        {},
        {"Authorization": "Bearer not-a-token"},
        {"Authorization": "Basic dXNlcjpwYXNz"},
    ],
)
def test_missing_or_invalid_token_is_anonymous(client, headers):
    assert client.get("/whoami", headers=headers).json() == {"actor": None}


def test_wrong_secret_inactive_and_unknown_users_are_anonymous(client):
    assert client.get("/whoami", headers=_headers(1, secret="other")).json() == {"actor": None}
    assert client.get("/whoami", headers=_headers(2)).json() == {"actor": None}
    assert client.get("/whoami", headers=_headers(404)).json() == {"actor": None}


def test_guard_unauthenticated_is_401(client):
    resp = client.get("/reports")
    assert resp.status_code == 401
    assert resp.json()["detail"]["code"] == "UNAUTHENTICATED"


def test_guard_allows_and_forbids(client):
    assert client.get("/reports", headers=_headers(1)).status_code == 200
    assert client.get("/reports/any", headers=_headers(1)).status_code == 200

    resp = client.get("/reports/export", headers=_headers(1))
    assert resp.status_code == 403
    detail = resp.json()["detail"]
    assert detail["code"] == "FORBIDDEN"
    assert detail["details"] == {"required_permission": "reports.view&reports.export"}


def test_mixed_expression_fails_at_declaration():
    with pytest.raises(MisconfiguredError):
        RequirePermission("a.view&b.view|c.view")
