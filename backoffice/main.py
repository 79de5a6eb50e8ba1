"""
FastAPI application factory.

Assembles the app, wires the auth core (session store, user directory,
audit sink, request gate, sweeper) onto `app.state`, registers routers
and the gate error handler.  The schema is managed by Alembic, not
create_all.

Collaborators can be injected (tests, alternative backends); anything
not injected is built from settings against the configured database.
"""

import logging
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from backoffice.controllers.admin_controller import router as admin_router
from backoffice.controllers.auth_controller import router as auth_router
from backoffice.core.config import Settings, settings as default_settings
from backoffice.core.database import build_engine, build_session_factory
from backoffice.core.errors import AuthenticationError, GateError
from backoffice.services.audit_service import AuditSink, LoggingAuditSink
from backoffice.services.credential_service import SqlUserDirectory, UserDirectory
from backoffice.services.gate_service import RequestGate
from backoffice.services.session_service import SessionStore, SqlSessionStore
from backoffice.services.sweeper import SessionSweeper

logging.basicConfig(
    level=logging.DEBUG if default_settings.DEBUG else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
    """Map every gate error to an opaque response; details stay server-side."""

    @app.exception_handler(GateError)
    async def handle_gate_error(request: Request, exc: GateError):
        if exc.status_code >= 500:
            logger.error(
                "%s %s failed closed: %s",
                request.method,
                request.url.path,
                exc.reason,
                exc_info=exc,
            )
        else:
            logger.info(
                "%s %s rejected (%d): %s",
                request.method,
                request.url.path,
                exc.status_code,
                exc.reason,
            )
        headers = {"WWW-Authenticate": "Session"} if isinstance(exc, AuthenticationError) else None
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.public_message},
            headers=headers,
        )


def create_app(
    settings: Settings | None = None,
    *,
    session_store: SessionStore | None = None,
    user_directory: UserDirectory | None = None,
    audit_sink: AuditSink | None = None,
) -> FastAPI:
    settings = settings or default_settings

    engine = None
    if session_store is None or user_directory is None:
        engine = build_engine(settings)
        session_factory = build_session_factory(engine)
        if session_store is None:
            session_store = SqlSessionStore(
                session_factory,
                ttl=timedelta(seconds=settings.SESSION_TTL_SECONDS),
                max_sessions_per_user=settings.MAX_SESSIONS_PER_USER,
            )
        if user_directory is None:
            user_directory = SqlUserDirectory(session_factory)
    audit_sink = audit_sink or LoggingAuditSink()

    sweeper = SessionSweeper(session_store, settings.SWEEP_INTERVAL_SECONDS)

    # ── Startup / Shutdown ───────────────────────────────────────────
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        sweeper.start()
        yield
        await sweeper.stop()
        if engine is not None:
            await engine.dispose()
            logger.info("Database engine disposed.")

    app = FastAPI(
        title=settings.APP_NAME,
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.session_store = session_store
    app.state.user_directory = user_directory
    app.state.audit_sink = audit_sink
    app.state.gate = RequestGate.from_settings(session_store, audit_sink, settings)
    app.state.sweeper = sweeper

    register_exception_handlers(app)

    # ── Register routers ─────────────────────────────────────────────
    app.include_router(auth_router)
    app.include_router(admin_router)

    # ── Health check ─────────────────────────────────────────────────
    @app.get("/health", tags=["Health"])
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
