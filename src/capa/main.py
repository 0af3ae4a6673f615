"""FastAPI application factory and lifespan management."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from capa import __version__
from capa.config import Settings, settings as default_settings
from capa.db.engine import create_db_engine, create_session_factory
from capa.logging_config import configure_logging

# Configure logging at import time
configure_logging(
    log_level=default_settings.log_level,
    json_output=default_settings.json_logs and not default_settings.local_mode,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application startup and shutdown resources."""
    app_settings: Settings = app.state.settings
    db_url = app_settings.effective_database_url
    engine = create_db_engine(db_url)

    # Auto-create tables for SQLite (local dev, no migrations)
    if "sqlite" in db_url:
        from capa.db.base import Base
        import capa.db.models  # noqa: F401 (register all ORM models)

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("SQLite tables created (local mode)")

    app.state.db_engine = engine
    app.state.db_session_factory = create_session_factory(engine)

    logger.info("CAPA API started (db=%s)", "sqlite" if "sqlite" in db_url else "postgresql")
    yield

    await engine.dispose()
    logger.info("CAPA API shutdown complete")


def create_app(app_settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    app_settings = app_settings or default_settings
    app = FastAPI(
        title="CAPA Lifecycle API",
        version=__version__,
        description="Nonconformity lifecycle engine: findings, corrective actions, effectiveness.",
        lifespan=lifespan,
    )
    app.state.settings = app_settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    from capa.api.middleware.trace_id import TraceIdMiddleware
    app.add_middleware(TraceIdMiddleware)

    # Register error handlers
    from capa.errors.handlers import register_exception_handlers
    register_exception_handlers(app)

    # Import and mount routers
    from capa.api.router import api_router
    app.include_router(api_router)

    return app


app = create_app()
