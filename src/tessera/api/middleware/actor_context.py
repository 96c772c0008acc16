from __future__ import annotations

import logging
from typing import Callable, Optional

from sqlalchemy.orm import Session
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from tessera.config import get_settings
from tessera.context import actor_var
from tessera.models.user import User
from tessera.security.auth.jwt import JWTError, decode_hs256, subject_user_id
from tessera.security.rbac.actor import Actor
from tessera.security.rbac.registry import PermissionRegistry

logger = logging.getLogger(__name__)


def get_bearer_token(request: Request) -> Optional[str]:
    auth = request.headers.get("authorization")
    if not auth:
        return None
    parts = auth.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1].strip() or None


def _default_session_factory() -> Session:
    from tessera import database

    return database.SessionLocal()


class ActorContextMiddleware(BaseHTTPMiddleware):
    """
    Resolve the bearer token into one immutable `Actor` per request.

    The actor is stored on `request.state.actor` and in `actor_var`.
    Missing, invalid or expired tokens and inactive users leave the request
    anonymous; route guards decide whether that is a 401.
    """

    def __init__(self, app, session_factory: Optional[Callable[[], Session]] = None):
        super().__init__(app)
        self.session_factory = session_factory or _default_session_factory

    def _resolve_actor(self, token: str) -> Optional[Actor]:
        settings = get_settings()
        try:
            payload = decode_hs256(
                token,
                secret=settings.JWT_SECRET_KEY,
                leeway_seconds=settings.AUTH_LEEWAY_SECONDS,
            )
            user_id = subject_user_id(payload)
        except JWTError as e:
            logger.info("Rejected bearer token: %s", e)
            return None

        db = self.session_factory()
        try:
            user = db.get(User, user_id)
            if user is None or not user.is_active:
                logger.info("Token subject %s not found or inactive", user_id)
                return None
            return PermissionRegistry(db).build_actor(user)
        finally:
            db.close()

    async def dispatch(self, request: Request, call_next) -> Response:
        token = get_bearer_token(request)
        actor = self._resolve_actor(token) if token else None
        request.state.actor = actor

        actor_token = actor_var.set(actor)
        try:
            return await call_next(request)
        finally:
            actor_var.reset(actor_token)
