from __future__ import annotations

from fastapi import APIRouter
from sqlalchemy import text

from tessera import __version__
from tessera.config import get_settings
from tessera.context import get_request_context
from tessera.database import get_db_session

router = APIRouter(tags=["system"])


@router.get("/health")
def health() -> dict:
    ctx = get_request_context()
    return {
        "ok": True,
        "service": "tessera",
        "version": __version__,
        "environment": get_settings().ENVIRONMENT,
        "user_id": ctx.user_id,
    }


@router.get("/health/deps")
def health_deps() -> dict:
    deps: dict = {}
    try:
        with get_db_session() as db:
            db.execute(text("SELECT 1"))
        deps["db"] = {"ok": True}
    except Exception as exc:
        deps["db"] = {"ok": False, "error": str(exc)}
    return {
        "ok": all(d["ok"] for d in deps.values()),
        "service": "tessera",
        "version": __version__,
        "deps": deps,
    }
