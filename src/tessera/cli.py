from __future__ import annotations

import logging
from typing import Optional

import typer
import uvicorn

from tessera import __version__
from tessera.config import get_settings

app = typer.Typer(add_completion=False, help="Tessera authorization engine CLI")


@app.callback()
def _root() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def start(
    host: Optional[str] = typer.Option(None, help="Bind host"),
    port: Optional[int] = typer.Option(None, help="Bind port"),
    reload: bool = typer.Option(False, help="Auto-reload on changes (dev)"),
) -> None:
    settings = get_settings()
    uvicorn.run(
        "tessera.api.app:create_app",
        factory=True,
        host=host or settings.HOST,
        port=port or settings.PORT,
        reload=reload,
    )


@app.command()
def version() -> None:
    typer.echo(__version__)


@app.command("init-db")
def init_db_command() -> None:
    """Create all tables in TESSERA_DATABASE_URL (idempotent)."""
    from tessera.database import init_db

    init_db(create_tables=True)
    typer.echo("Database initialized.")


@app.command()
def seed(
    demo: bool = typer.Option(True, "--demo/--no-demo", help="Include demo users and posts"),
    faker_seed: Optional[int] = typer.Option(None, "--seed", help="Faker seed"),
) -> None:
    """Seed default roles/permissions (and demo data)."""
    from tessera.database import get_db_session, init_db
    from tessera.seeder import SeederRegistry

    init_db(create_tables=True)
    with get_db_session() as session:
        SeederRegistry.run_all(session, include_demo=demo, seed=faker_seed)
    typer.echo("Seeding completed.")


@app.command("load-manifest")
def load_manifest_command(
    path: str = typer.Argument(..., help="YAML or JSON RBAC manifest"),
) -> None:
    """Apply roles, permissions, policies and field restrictions from a manifest."""
    from tessera.database import get_db_session, init_db
    from tessera.exceptions import TesseraException
    from tessera.security.rbac.registry import PermissionRegistry
    from tessera.seeder.manifest import apply_manifest, load_manifest

    init_db(create_tables=True)
    try:
        with get_db_session() as session:
            counts = apply_manifest(PermissionRegistry(session), load_manifest(path))
    except TesseraException as exc:
        typer.echo(exc.message, err=True)
        raise typer.Exit(code=1)
    typer.echo(", ".join(f"{key}={value}" for key, value in counts.items()))


@app.command("issue-token")
def issue_token(
    user_id: int = typer.Argument(..., help="User id (token subject)"),
    ttl: Optional[int] = typer.Option(None, help="TTL seconds"),
) -> None:
    """Print a signed HS256 access token for a user (dev only)."""
    from tessera.database import get_db_session
    from tessera.models.user import User
    from tessera.security.auth.jwt import build_access_token_payload, encode_hs256

    settings = get_settings()
    with get_db_session() as session:
        if session.get(User, user_id) is None:
            typer.echo(f"User {user_id} not found", err=True)
            raise typer.Exit(code=1)

    payload = build_access_token_payload(
        user_id=user_id, ttl_seconds=ttl or settings.JWT_ACCESS_TOKEN_TTL_SECONDS
    )
    typer.echo(encode_hs256(payload, secret=settings.JWT_SECRET_KEY))


@app.command()
def check(
    user_id: int = typer.Argument(..., help="User id"),
    permission: str = typer.Argument(..., help="Permission name, e.g. posts.update"),
    record_id: Optional[int] = typer.Option(None, "--record-id", help="Post id to check policies against"),
) -> None:
    """Explain an authorization decision for a user."""
    from tessera.database import get_db_session
    from tessera.exceptions import NotFoundError
    from tessera.models.post import Post
    from tessera.security.rbac.policy_engine import PolicyEngine
    from tessera.security.rbac.registry import PermissionRegistry

    with get_db_session() as session:
        registry = PermissionRegistry(session)
        try:
            actor = registry.build_actor(user_id)
        except NotFoundError as exc:
            typer.echo(exc.message, err=True)
            raise typer.Exit(code=1)

        record = None
        if record_id is not None:
            record = session.get(Post, record_id)
            if record is None:
                typer.echo(f"Post {record_id} not found", err=True)
                raise typer.Exit(code=1)

        granted = registry.has_permission(actor, permission)
        allowed = PolicyEngine(registry).authorize(actor, permission, record)
        policies = registry.policies_for(permission)

        typer.echo(f"roles: {', '.join(sorted(actor.roles)) or '-'}")
        typer.echo(f"granted: {granted}")
        typer.echo(f"policies: {len(policies)}")
        for policy in policies:
            typer.echo(f"  [{policy.priority}] {policy.policy_type}: {policy.conditions}")
        typer.echo(f"allowed: {allowed}")

    if not allowed:
        raise typer.Exit(code=2)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
