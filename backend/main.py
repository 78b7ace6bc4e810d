# main.py — Taskboard API
# Features:
# - Request correlation IDs and timing
# - Security headers
# - Structured error bodies (detail, code, request_id)
# - Health check with DB verification
# - Auth and task routers

import json
import uuid
import time
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from auth import AuthService, TokenIssuer
from config import Settings, check_startup_config
from database import Database, get_db_session
from errors import TaskboardError
from models import utcnow

VERSION = "1.0.0"

logger = logging.getLogger("taskboard")


def _configure_logging(level: str):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
    )


def _first_message(errors) -> str:
    if not errors:
        return "Invalid request"
    msg = errors[0]["msg"]
    # pydantic prefixes messages raised from our own validators
    return msg[len("Value error, "):] if msg.startswith("Value error, ") else msg


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    logger.info(f"🚀 Starting Taskboard API v{VERSION} ({settings.environment})...")
    await app.state.db.create_all()
    logger.info("✅ Database initialized")
    check_startup_config(settings)
    yield
    logger.info("🛑 Shutting down Taskboard API...")
    await app.state.db.dispose()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    _configure_logging(settings.log_level)

    app = FastAPI(
        title="Taskboard API",
        description="Multi-user task management with assignment, status tracking and threaded comments",
        version=VERSION,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.settings = settings
    app.state.db = Database(settings.database_url, echo=settings.sql_echo)
    app.state.tokens = TokenIssuer(settings.jwt_secret_key, settings.token_expire_hours)
    AuthService.bcrypt_rounds = settings.bcrypt_rounds

    # ============================================================
    # CORS
    # ============================================================

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID", "X-Correlation-ID"],
        expose_headers=["X-Request-ID", "X-Correlation-ID"],
    )

    # ============================================================
    # MIDDLEWARE: Correlation IDs + Timing
    # ============================================================

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        correlation_id = request.headers.get("X-Correlation-ID", request_id)
        request.state.request_id = request_id
        request.state.correlation_id = correlation_id

        start = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Correlation-ID"] = correlation_id
        response.headers["X-Response-Time"] = f"{duration:.4f}s"

        logger.info(
            f"{request.method} {request.url.path} → {response.status_code} "
            f"({duration:.3f}s) [rid={request_id[:8]}]"
        )
        return response

    # ============================================================
    # MIDDLEWARE: Security Headers
    # ============================================================

    @app.middleware("http")
    async def security_headers_middleware(request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if settings.is_production:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response

    # ============================================================
    # EXCEPTION HANDLERS
    # ============================================================

    @app.exception_handler(TaskboardError)
    async def taskboard_exception_handler(request: Request, exc: TaskboardError):
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "detail": exc.detail,
                "code": exc.code,
                "request_id": getattr(request.state, "request_id", None),
            },
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        # Sanitise errors to ensure JSON serialisability
        errors = []
        for err in exc.errors():
            clean_err = {
                "type": str(err.get("type", "unknown")),
                "loc": list(err.get("loc", [])),
                "msg": str(err.get("msg", "")),
            }
            if "input" in err:
                try:
                    json.dumps(err["input"])
                    clean_err["input"] = err["input"]
                except (TypeError, ValueError):
                    clean_err["input"] = str(err["input"])
            errors.append(clean_err)

        return JSONResponse(
            status_code=400,
            content={
                "detail": _first_message(errors),
                "errors": errors,
                "request_id": getattr(request.state, "request_id", None),
            },
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "detail": "Internal server error",
                "request_id": getattr(request.state, "request_id", None),
            },
        )

    # ============================================================
    # ROUTERS
    # ============================================================

    from routers import auth, tasks

    app.include_router(auth.router)
    app.include_router(tasks.router)

    # ============================================================
    # HEALTH & ROOT
    # ============================================================

    @app.get("/health")
    async def health_check(db: AsyncSession = Depends(get_db_session)):
        """Health check with database connectivity verification"""
        try:
            await db.execute(text("SELECT 1"))
            db_status = "connected"
        except Exception as e:
            logger.warning(f"Health check: database unreachable: {str(e)[:100]}")
            db_status = "disconnected"

        return {
            "status": "OK" if db_status == "connected" else "degraded",
            "timestamp": utcnow().isoformat(),
            "database": db_status,
        }

    @app.get("/")
    async def root():
        return {
            "name": "Taskboard API",
            "version": VERSION,
            "docs": "/docs",
            "health": "/health",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=app.state.settings.port,
        reload=not app.state.settings.is_production,
    )
