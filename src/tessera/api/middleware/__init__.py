from tessera.api.middleware.actor_context import ActorContextMiddleware, get_bearer_token

__all__ = ["ActorContextMiddleware", "get_bearer_token"]
