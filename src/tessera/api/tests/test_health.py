from __future__ import annotations

from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from tessera import __version__
from tessera.api.app import create_app
from tessera.database import create_db_engine


def test_health_is_public():
    engine = create_db_engine("sqlite:///:memory:")
    client = TestClient(create_app(session_factory=sessionmaker(bind=engine)))

    resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["ok"] is True
    assert body["version"] == __version__
    assert body["user_id"] is None
    engine.dispose()
