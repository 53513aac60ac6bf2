import os

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from .auth.router import router as auth_router
from .config import settings
from .db import Base, engine
from .errors import register_exception_handlers
from .logging import RequestIdMiddleware, setup_logging
from .models import models  # noqa: F401  registers tables on Base.metadata
from .routes.dashboard import router as dashboard_router
from .routes.issues import router as issues_router
from .routes.tasks import router as tasks_router
from .routes.users import router as users_router


log = structlog.get_logger(__name__)


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.app_name)

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    register_exception_handlers(app)

    # Routers
    app.include_router(auth_router)
    app.include_router(tasks_router)
    app.include_router(issues_router)
    app.include_router(dashboard_router)
    app.include_router(users_router)

    # Metrics
    Instrumentator().instrument(app).expose(app)

    @app.on_event("startup")
    def _startup():
        # Ensure local SQLite directory exists
        if settings.database_url.startswith("sqlite:///./"):
            os.makedirs("var", exist_ok=True)
        if settings.auto_create_db:
            Base.metadata.create_all(bind=engine)
            log.info("tables_verified", tables=len(Base.metadata.tables))
        log.info("startup_complete", environment=settings.environment, tz=settings.tz_default)

    @app.get("/health")
    def health():
        return {"status": "ok", "app": settings.app_name}

    @app.get("/db-health")
    def db_health():
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            log.error("db_health_failed", error=str(exc))
            return {"status": "error", "database": "unreachable"}
        return {"status": "ok", "database": "reachable"}

    return app


app = create_app()
