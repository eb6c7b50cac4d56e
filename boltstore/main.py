from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from boltstore.core.config import settings
from boltstore.core.db import Database
from boltstore.core.errors import BoltstoreError
from boltstore.core.logging_setup import configure_logging
from boltstore.core.middleware import RequestIDMiddleware, log_error, request_id_of

configure_logging(settings.LOG_LEVEL)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("app.startup", environment=settings.ENVIRONMENT)

    db = getattr(app.state, "db", None) or Database.from_settings(settings)
    app.state.db = db
    try:
        await db.init()
        logger.info("db.connected", pool_size=db.pool.get_size())
    except Exception as e:
        # Start anyway; /health reports the outage and requests fail with 500.
        logger.warning("db.connection_failed", error=str(e))

    yield

    logger.info("app.shutdown")
    await db.close()


async def _boltstore_error_handler(request: Request, exc: BoltstoreError) -> JSONResponse:
    if exc.status_code >= 500:
        await log_error(request, exc, status_code=exc.status_code)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.public_message})
    logger.info(
        "request.rejected",
        request_id=request_id_of(request),
        path=request.url.path,
        status_code=exc.status_code,
        error=exc.message,
    )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    await log_error(request, exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


def create_app(db: Database | None = None) -> FastAPI:
    app = FastAPI(
        title="Boltstore API",
        description="Persistence service for projects, chat history and conversation search",
        version="0.1.0",
        lifespan=lifespan,
    )
    if db is not None:
        app.state.db = db

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "PUT", "PATCH", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
        max_age=3600,
    )
    app.add_middleware(RequestIDMiddleware)

    app.add_exception_handler(BoltstoreError, _boltstore_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)

    from boltstore.api.v1 import auth, chats, conversations, projects, users

    app.include_router(auth.router, prefix="/api/v1/auth", tags=["auth"])
    app.include_router(users.router, prefix="/api/v1/users", tags=["users"])
    app.include_router(projects.router, prefix="/api/v1/projects", tags=["projects"])
    app.include_router(
        conversations.router,
        prefix="/api/v1/projects/{project_id}/conversations",
        tags=["conversations"],
    )
    app.include_router(chats.router, prefix="/api/v1/chats", tags=["chats"])

    @app.get("/health")
    async def health_check(request: Request):
        """
        Liveness + readiness check.

        Returns 200 only when the database answers a trivial query.
        """
        db_ok = False
        try:
            await request.app.state.db.fetchval("SELECT 1")
            db_ok = True
        except Exception as exc:
            logger.warning("health.db_unreachable", error=str(exc))

        body = {
            "status": "healthy" if db_ok else "degraded",
            "db": "ok" if db_ok else "unavailable",
        }
        http_status = status.HTTP_200_OK if db_ok else status.HTTP_503_SERVICE_UNAVAILABLE
        return JSONResponse(content=body, status_code=http_status)

    return app


app = create_app()
