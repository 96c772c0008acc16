from __future__ import annotations

from typing import Callable, Generator, Optional

from fastapi import FastAPI
from sqlalchemy.orm import Session

from tessera import __version__
from tessera.api.middleware.actor_context import ActorContextMiddleware
from tessera.api.routers.health import router as health_router
from tessera.api.routers.posts import router as posts_router
from tessera.api.routers.rbac import router as rbac_router
from tessera.config import get_settings
from tessera.database import get_db, init_db


def create_app(*, session_factory: Optional[Callable[[], Session]] = None) -> FastAPI:
    """
    Build the API.

    `session_factory` replaces the module-level `SessionLocal` for both the
    actor middleware and `get_db` (tests pass an in-memory factory).
    """
    app = FastAPI(title="Tessera", version=__version__)
    app.add_middleware(ActorContextMiddleware, session_factory=session_factory)
    app.include_router(health_router, prefix="/api/v1")
    app.include_router(rbac_router, prefix="/api/v1")
    app.include_router(posts_router, prefix="/api/v1")

    if session_factory is not None:

        def _get_db() -> Generator[Session, None, None]:
            db = session_factory()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = _get_db
    else:

        @app.on_event("startup")
        def _startup() -> None:  # pragma: no cover
            # Dev convenience; other environments create the schema explicitly.
            if get_settings().ENVIRONMENT == "dev":
                init_db(create_tables=True)

    return app
