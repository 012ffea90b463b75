import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from visa_portal.api.router import api_router
from visa_portal.core.config import settings
from visa_portal.core.logging import configure_logging
from visa_portal.realtime.hub import RealtimeHub

logger = logging.getLogger(__name__)

def _run_migrations_if_needed():
    """Apply Alembic migrations automatically in production if enabled.

    Controlled by env var AUTO_APPLY_MIGRATIONS (default: '1'). Safe to run repeatedly.
    """
    if settings.env.lower() != "prod":
        return
    if os.getenv("AUTO_APPLY_MIGRATIONS", "1") != "1":
        return
    try:
        from alembic import command
        from alembic.config import Config
        alembic_ini = Path(__file__).resolve().parents[1] / "alembic.ini"
        if not alembic_ini.exists():
            logger.warning("alembic.ini not found at %s, skipping auto-migrations", alembic_ini)
            return
        cfg = Config(str(alembic_ini))
        # Ensure script_location resolves correctly when launched from arbitrary CWD
        script_location = Path(__file__).resolve().parents[1] / "alembic"
        if script_location.exists():
            cfg.set_main_option("script_location", str(script_location))
        logger.info("Applying Alembic migrations -> head ...")
        command.upgrade(cfg, "head")
        logger.info("Migrations applied successfully")
    except Exception:  # pragma: no cover
        logger.exception("Migration failed")

@asynccontextmanager
async def lifespan(app: FastAPI):
    _run_migrations_if_needed()
    yield
    app.state.realtime.shutdown()

def create_app() -> FastAPI:
    configure_logging(settings.log_level)
    app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
    # One registry per app instance
    app.state.realtime = RealtimeHub.from_settings(settings)

    origins = settings.cors_origins
    logger.info("Resolved CORS origins: %s", origins)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)

    return app

app = create_app()
