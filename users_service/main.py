"""
FastAPI application factory.

Assembles the app, registers all routers, and wires up lifecycle
events.  Database schema is managed by Alembic — NOT create_all.

Everything a request needs (settings, engine, session factory, token
issuer, mailer) is built here and parked on `app.state`; tests call
`create_app(test_settings)` to get a fully isolated instance.  The rate
limiter is shared; the app only switches it on or off.
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from users_service.controllers.admin_controller import router as admin_router
from users_service.controllers.auth_controller import router as auth_router
from users_service.core.config import Settings, settings as default_settings
from users_service.core.database import build_engine, build_session_factory
from users_service.core.error_handling import register_exception_handlers
from users_service.core.rate_limit import limiter
from users_service.core.security import build_token_issuer
from users_service.models import Base  # noqa: F401 — ensures all models are registered
from users_service.services.email_service import build_mailer

logging.basicConfig(
    level=logging.DEBUG if default_settings.DEBUG else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or default_settings

    app = FastAPI(
        title=settings.APP_NAME,
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    engine = build_engine(settings)
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = build_session_factory(engine)
    app.state.token_issuer = build_token_issuer(settings)
    app.state.mailer = build_mailer(settings)

    limiter.enabled = settings.rate_limit_active
    app.state.limiter = limiter

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)

    # ── Register routers ─────────────────────────────────────────────
    # Auth first: its fixed paths (/health, /profile, ...) must win over
    # the admin router's `/{user_id}`.
    app.include_router(auth_router, prefix=settings.API_PREFIX)
    app.include_router(admin_router, prefix=settings.API_PREFIX)

    # ── Startup / Shutdown ───────────────────────────────────────────
    @app.on_event("startup")
    async def on_startup() -> None:
        """Refuse to serve without every JWT secret (except in tests).

        NOTE: Database schema is managed by Alembic migrations.
        Run `alembic upgrade head` before starting the app.
        """
        if not settings.is_test:
            app.state.token_issuer.ensure_configured()
        logger.info("%s started (%s)", settings.APP_NAME, settings.ENVIRONMENT)

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        await engine.dispose()
        logger.info("Database engine disposed.")

    return app


app = create_app()
