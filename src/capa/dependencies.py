"""FastAPI dependency injection providers."""

from collections.abc import AsyncGenerator

from fastapi import Request

from capa.config import Settings, settings
from capa.errors.exceptions import AuthenticationError
from capa.models.common import Actor


async def get_db(request: Request) -> AsyncGenerator:
    """Yield a database session from the app's session factory."""
    session_factory = request.app.state.db_session_factory
    async with session_factory() as session:
        yield session


def get_settings(request: Request) -> Settings:
    """Return the app's settings (overridable per app instance in tests)."""
    return getattr(request.app.state, "settings", settings)


async def get_actor(request: Request) -> Actor:
    """Return the acting identity forwarded by the upstream gateway or raise 401."""
    user_id = request.headers.get("x-user-id", "").strip()
    if not user_id:
        raise AuthenticationError("X-User-Id header is required")
    user_name = request.headers.get("x-user-name", "").strip() or None
    return Actor(user_id=user_id, user_name=user_name)
