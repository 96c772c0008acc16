from __future__ import annotations

from contextvars import ContextVar
from dataclasses import dataclass
from typing import Optional

from tessera.security.rbac.actor import Actor

actor_var: ContextVar[Optional[Actor]] = ContextVar("actor", default=None)
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


@dataclass(frozen=True)
class RequestContext:
    actor: Optional[Actor]
    request_id: Optional[str]

    @property
    def user_id(self) -> Optional[int]:
        return self.actor.id if self.actor else None


def get_current_actor() -> Optional[Actor]:
    return actor_var.get()


def get_request_context() -> RequestContext:
    return RequestContext(actor=actor_var.get(), request_id=request_id_var.get())
