from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable, Optional

from tessera.exceptions import ForbiddenError
from tessera.security.rbac.actor import Actor
from tessera.security.rbac.conditions import evaluate, normalize_policy_conditions
from tessera.security.rbac.registry import PermissionRegistry

logger = logging.getLogger(__name__)


class PolicyEngine:
    """
    Record-level authorization.

    A record is admitted when the actor holds the permission and either the
    permission has no policies or at least one policy matches. Policies are
    tried highest priority first and the first match wins; priority never
    changes the outcome.
    """

    def __init__(self, registry: PermissionRegistry):
        self.registry = registry

    def authorize(
        self,
        actor: Optional[Actor],
        permission_name: str,
        record: Any = None,
        *,
        now: Optional[datetime] = None,
    ) -> bool:
        if actor is None or not self.registry.has_permission(actor, permission_name):
            return False

        # Table-level check only.
        if record is None:
            return True

        policies = self.registry.policies_for(permission_name)
        if not policies:
            return True

        for policy in policies:
            tree = normalize_policy_conditions(policy.policy_type, policy.conditions)
            if evaluate(tree, record, actor, now=now):
                return True

        logger.debug(
            "Actor %s matched none of %d policies on %s",
            actor.id,
            len(policies),
            permission_name,
        )
        return False

    def authorize_all(
        self, actor: Optional[Actor], permission_names: Iterable[str], record: Any = None
    ) -> bool:
        return all(self.authorize(actor, name, record) for name in permission_names)

    def authorize_any(
        self, actor: Optional[Actor], permission_names: Iterable[str], record: Any = None
    ) -> bool:
        return any(self.authorize(actor, name, record) for name in permission_names)

    def ensure_authorized(
        self, actor: Optional[Actor], permission_name: str, record: Any = None
    ) -> None:
        if not self.authorize(actor, permission_name, record):
            raise ForbiddenError(permission_name)
