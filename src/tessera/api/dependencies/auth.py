from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends, HTTPException
from sqlalchemy.orm import Session
from starlette.requests import Request

from tessera.database import get_db
from tessera.exceptions import ForbiddenError, UnauthenticatedError
from tessera.security.rbac.actor import Actor
from tessera.security.rbac.expressions import parse_permission_expression
from tessera.security.rbac.field_restrictor import FieldRestrictor
from tessera.security.rbac.policy_engine import PolicyEngine
from tessera.security.rbac.query_scope import QueryScope
from tessera.security.rbac.registry import PermissionRegistry

logger = logging.getLogger(__name__)


def get_current_actor_optional(request: Request) -> Optional[Actor]:
    return getattr(request.state, "actor", None)


def get_current_actor(actor: Optional[Actor] = Depends(get_current_actor_optional)) -> Actor:
    if actor is None:
        raise HTTPException(status_code=401, detail=UnauthenticatedError().to_dict())
    return actor


class RequirePermission:
    """
    Route guard for a permission expression (`a`, `a|b`, `a&b`).

    Only the table-level grant is checked here; handlers run the policy
    engine once the record is loaded. A malformed expression fails when the
    route is declared, not when it is called.
    """

    def __init__(self, expression: str):
        self.expression = parse_permission_expression(expression)

    def __call__(self, actor: Optional[Actor] = Depends(get_current_actor_optional)) -> Actor:
        if actor is None:
            raise HTTPException(status_code=401, detail=UnauthenticatedError().to_dict())
        if not self.expression.is_satisfied_by(actor):
            logger.info("Actor %s lacks %s", actor.id, self.expression.required)
            raise HTTPException(
                status_code=403, detail=ForbiddenError(self.expression.required).to_dict()
            )
        return actor


def get_registry(db: Session = Depends(get_db)) -> PermissionRegistry:
    return PermissionRegistry(db)


def get_policy_engine(registry: PermissionRegistry = Depends(get_registry)) -> PolicyEngine:
    return PolicyEngine(registry)


def get_field_restrictor(registry: PermissionRegistry = Depends(get_registry)) -> FieldRestrictor:
    return FieldRestrictor(registry)


def get_query_scope(registry: PermissionRegistry = Depends(get_registry)) -> QueryScope:
    return QueryScope(registry)
