"""Points Ledger - FastAPI Application."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic.alias_generators import to_camel
from starlette.exceptions import HTTPException as StarletteHTTPException

from points_ledger.api import register_routers
from points_ledger.core.config import get_settings
from points_ledger.core.exceptions import InsufficientBalanceError, LedgerError
from points_ledger.core.logging import setup_logging
from points_ledger.core.redis import close_redis, init_redis
from points_ledger.db import close_db, init_db

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler.

    Startup: Configure logging, create tables, open the Redis pool
    Shutdown: Close Redis and database connections
    """
    settings = get_settings()
    setup_logging(settings.log_level)

    # Startup
    await init_db()
    await init_redis()
    logger.info("%s started", settings.app_name)
    yield
    # Shutdown
    await close_redis()
    await close_db()


def _error_body(message: str, **extra) -> dict:
    return {"ok": False, "error": message, **extra}


async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    """Render ledger errors as ``{ok: false, error, ...details}``."""
    extra = {to_camel(key): value for key, value in exc.details.items()}
    if isinstance(exc, InsufficientBalanceError):
        extra["insufficientPoints"] = True
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=_error_body(exc.message, **extra))


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed request bodies are a 400, like every other validation failure."""
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=400,
        content=_error_body(f"{field}: {message}" if field else message),
    )


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


def create_app() -> FastAPI:
    """Application factory.

    Returns:
        Configured FastAPI application instance
    """
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Points/credits ledger API",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(LedgerError, ledger_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)

    register_routers(app)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy"}

    return app


# Application instance
app = create_app()
