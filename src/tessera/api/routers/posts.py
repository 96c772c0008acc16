"""
Sample resource showing every enforcement point:

- route guard (`RequirePermission`) for the table-level grant
- query scope on list endpoints
- policy engine once a single record is loaded
- field restrictions on every serialized record and on updates
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from tessera.api.dependencies.auth import (
    RequirePermission,
    get_field_restrictor,
    get_policy_engine,
    get_query_scope,
)
from tessera.database import get_db
from tessera.exceptions import ForbiddenError, NotFoundError, TesseraException
from tessera.models.post import Post
from tessera.security.rbac.actor import Actor
from tessera.security.rbac.field_restrictor import FieldRestrictor
from tessera.security.rbac.policy_engine import PolicyEngine
from tessera.security.rbac.query_scope import QueryScope

router = APIRouter(prefix="/posts", tags=["Posts"])


class PostCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    body: Optional[str] = None
    status: str = Field(default="draft", max_length=20)


class PostUpdateRequest(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    body: Optional[str] = None
    status: Optional[str] = Field(default=None, max_length=20)
    published_at: Optional[int] = None


def _serialize(post: Post) -> Dict[str, Any]:
    data = post.to_dict()
    created_at = data.get("created_at")
    if created_at is not None:
        data["created_at"] = created_at.isoformat()
    return data


def _load_post(db: Session, post_id: int) -> Post:
    post = db.get(Post, post_id)
    if post is None:
        exc = NotFoundError("Post", post_id)
        raise HTTPException(status_code=exc.status_code, detail=exc.to_dict())
    return post


def _authorize(engine: PolicyEngine, actor: Actor, permission: str, post: Post) -> None:
    try:
        engine.ensure_authorized(actor, permission, post)
    except ForbiddenError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.to_dict()) from exc


@router.get("")
def list_posts(
    actor: Actor = Depends(RequirePermission("posts.view")),
    db: Session = Depends(get_db),
    scope: QueryScope = Depends(get_query_scope),
    restrictor: FieldRestrictor = Depends(get_field_restrictor),
) -> Dict[str, Any]:
    stmt = scope.for_actor(Post, actor, "view").order_by(Post.id)
    posts = db.execute(stmt).scalars().all()
    items = restrictor.apply_restrictions_to_many("posts.view", [_serialize(p) for p in posts])
    return {"total": len(items), "items": items}


@router.post("")
def create_post(
    req: PostCreateRequest,
    actor: Actor = Depends(RequirePermission("posts.create")),
    db: Session = Depends(get_db),
    restrictor: FieldRestrictor = Depends(get_field_restrictor),
) -> Dict[str, Any]:
    post = Post(
        title=req.title,
        body=req.body,
        status=req.status,
        user_id=actor.id,
        team_id=actor.get("team_id"),
        department_id=actor.get("department_id"),
    )
    db.add(post)
    db.commit()
    db.refresh(post)
    return restrictor.apply_restrictions("posts.view", _serialize(post))


@router.get("/{post_id}")
def get_post(
    post_id: int,
    actor: Actor = Depends(RequirePermission("posts.view")),
    db: Session = Depends(get_db),
    engine: PolicyEngine = Depends(get_policy_engine),
    restrictor: FieldRestrictor = Depends(get_field_restrictor),
) -> Dict[str, Any]:
    post = _load_post(db, post_id)
    _authorize(engine, actor, "posts.view", post)
    return restrictor.apply_restrictions("posts.view", _serialize(post))


@router.patch("/{post_id}")
def update_post(
    post_id: int,
    req: PostUpdateRequest,
    actor: Actor = Depends(RequirePermission("posts.update")),
    db: Session = Depends(get_db),
    engine: PolicyEngine = Depends(get_policy_engine),
    restrictor: FieldRestrictor = Depends(get_field_restrictor),
) -> Dict[str, Any]:
    post = _load_post(db, post_id)
    _authorize(engine, actor, "posts.update", post)

    requested = req.model_dump(exclude_unset=True)
    try:
        allowed = restrictor.filter_readonly_fields("posts.update", requested)
    except TesseraException as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.to_dict()) from exc
    for key, value in allowed.items():
        setattr(post, key, value)
    db.commit()
    db.refresh(post)

    result = restrictor.apply_restrictions("posts.view", _serialize(post))
    ignored: List[str] = sorted(set(requested) - set(allowed))
    if ignored:
        result["ignored_fields"] = ignored
    return result


@router.delete("/{post_id}")
def delete_post(
    post_id: int,
    actor: Actor = Depends(RequirePermission("posts.delete")),
    db: Session = Depends(get_db),
    engine: PolicyEngine = Depends(get_policy_engine),
) -> Dict[str, Any]:
    post = _load_post(db, post_id)
    _authorize(engine, actor, "posts.delete", post)
    db.delete(post)
    db.commit()
    return {"ok": True, "deleted": post_id}
