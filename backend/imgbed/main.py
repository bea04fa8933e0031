"""
ImgBed Backend — FastAPI Application Factory
==============================================

What:  Creates and configures the FastAPI application instance.
How:   Factory pattern: create_app(settings) builds the storage adapter and
       services for that configuration, registers middleware, exception
       handlers and routes, and returns the app.
Who:   uvicorn (`uvicorn imgbed.main:app`) and the test suite.

Application Architecture:
    ┌──────────────────────────────────────────────────────┐
    │                    FastAPI App                       │
    │                                                      │
    │  Middleware Chain:                                   │
    │  ┌──────────────┐ ┌──────────┐ ┌──────────────────┐  │
    │  │ Rate Limit   │→│ Req ID   │→│ Access Logging   │  │
    │  │ (uploads)    │ └──────────┘ └──────────────────┘  │
    │  └──────────────┘                                    │
    │                                                      │
    │  Routes:                                             │
    │  POST /api/upload        GET /i/{filename}           │
    │  GET  /api/images/preview/{path}                     │
    │  GET  /api/images/{id}   DELETE /api/images/{id}     │
    │  GET  /health                                        │
    │                                                      │
    │  Exception Handlers:                                 │
    │  400 validation/unsupported │ 401 │ 404 │ 429 │ 500  │
    └──────────────────────────────────────────────────────┘

Responses are not compressed: image bodies are already compressed and
Content-Length must match the stored file.
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from imgbed import __version__
from imgbed.config import Settings, settings as default_settings
from imgbed.database import build_engine, build_session_factory, dispose_engine
from imgbed.exceptions import (
    DatabaseError,
    FileStorageError,
    ImgBedError,
    InternalError,
    NotFoundError,
    RateLimitExceededError,
    UnauthorizedError,
    UnsupportedOrCorruptImageError,
    ValidationError,
)
from imgbed.middleware.logging import RequestLoggingMiddleware
from imgbed.middleware.rate_limit import RateLimitMiddleware
from imgbed.middleware.request_id import RequestIDMiddleware, request_id_var
from imgbed.routes import health, images, upload
from imgbed.services.auth_service import AuthService
from imgbed.services.file_service import FileService
from imgbed.services.ledger import ImageLedger
from imgbed.services.retrieval_service import RetrievalService
from imgbed.services.upload_service import UploadService

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging(level: str = "INFO") -> None:
    """
    Configure the root logger once, before anything else logs.

    Format: 2024-01-15T12:00:00 [INFO] imgbed.services.upload_service: ...
    """
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # Chatty at INFO/DEBUG
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("PIL").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Startup:
        1. Setup logging
        2. Validate production settings (fatal: startup aborts)
        3. Report the storage root
    Shutdown:
        1. Dispose the database engine
    """
    config: Settings = app.state.settings
    setup_logging(config.log_level)
    logger.info("=" * 60)
    logger.info("ImgBed Backend %s starting up (%s)...", __version__, config.environment)

    try:
        config.validate_required_for_production()
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        logger.error("Fix the configuration and restart the server.")
        raise

    logger.info("Storage directory: %s", app.state.storage.storage_root)
    logger.info("Server ready at http://%s:%d", config.backend_host, config.backend_port)
    logger.info("=" * 60)

    yield

    logger.info("ImgBed Backend shutting down...")
    await dispose_engine(app.state.engine)
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _error_response(
    status_code: int,
    error: str,
    message: str,
    details: Optional[dict] = None,
    headers: Optional[dict] = None,
) -> JSONResponse:
    content = {"error": error, "message": message, "request_id": request_id_var.get("")}
    if details:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map the exception hierarchy to HTTP responses.

    Handler table:
        ValidationError                 → 400 validation_error
        UnsupportedOrCorruptImageError  → 400 unsupported_image
        UnauthorizedError               → 401 unauthorized (WWW-Authenticate: Bearer)
        NotFoundError                   → 404 not_found ("Image not found")
        RateLimitExceededError          → 429 rate_limit_exceeded (Retry-After)
        DatabaseError, FileStorageError → 500 server_error
        InternalError, ImgBedError      → 500 internal_server_error
        Exception                       → 500 internal_server_error

    5xx responses never carry context; it goes to the server log.
    """

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        logger.warning("[%s] Validation error: %s", request_id_var.get(""), exc.message)
        return _error_response(400, "validation_error", exc.message, details=exc.context)

    @app.exception_handler(UnsupportedOrCorruptImageError)
    async def handle_unsupported_image(request: Request, exc: UnsupportedOrCorruptImageError):
        logger.warning(
            "[%s] Rejected image: %s | Context: %s",
            request_id_var.get(""),
            exc.message,
            exc.context,
        )
        return _error_response(400, "unsupported_image", exc.message)

    @app.exception_handler(UnauthorizedError)
    async def handle_unauthorized(request: Request, exc: UnauthorizedError):
        logger.info(
            "[%s] Unauthorized %s %s: %s",
            request_id_var.get(""),
            request.method,
            request.url.path,
            exc.reason,
        )
        return _error_response(
            401,
            "unauthorized",
            exc.message,
            headers={"WWW-Authenticate": "Bearer"},
        )

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        logger.info(
            "[%s] Not found %s: %s",
            request_id_var.get(""),
            request.url.path,
            exc.context,
        )
        return _error_response(404, "not_found", NotFoundError.MESSAGE)

    @app.exception_handler(RateLimitExceededError)
    async def handle_rate_limit(request: Request, exc: RateLimitExceededError):
        return _error_response(
            429,
            "rate_limit_exceeded",
            exc.message,
            details={"retry_after": exc.retry_after},
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(DatabaseError)
    async def handle_database_error(request: Request, exc: DatabaseError):
        logger.error(
            "[%s] Database error: %s | Context: %s",
            request_id_var.get(""),
            exc.message,
            exc.context,
        )
        return _error_response(
            500, "server_error", "An internal error occurred. Please try again later."
        )

    @app.exception_handler(FileStorageError)
    async def handle_file_storage_error(request: Request, exc: FileStorageError):
        logger.error(
            "[%s] File storage error: %s | Context: %s",
            request_id_var.get(""),
            exc.message,
            exc.context,
        )
        return _error_response(500, "server_error", exc.message)

    @app.exception_handler(InternalError)
    async def handle_internal_error(request: Request, exc: InternalError):
        logger.error(
            "[%s] Internal error: %s | Context: %s",
            request_id_var.get(""),
            exc.message,
            exc.context,
        )
        return _error_response(500, "internal_server_error", exc.message)

    @app.exception_handler(ImgBedError)
    async def handle_imgbed_error(request: Request, exc: ImgBedError):
        logger.error(
            "[%s] Unhandled %s: %s | Context: %s",
            request_id_var.get(""),
            type(exc).__name__,
            exc.message,
            exc.context,
        )
        return _error_response(
            500, "internal_server_error", "An unexpected error occurred. Please try again later."
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error(
            "[%s] Unexpected error: %s",
            request_id_var.get(""),
            exc,
            exc_info=True,
        )
        return _error_response(
            500,
            "internal_server_error",
            "An unexpected error occurred. Please try again or contact support.",
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build a configured FastAPI app.

    Args:
        settings: Configuration for this app; defaults to the environment.
                  The database engine, storage root, ledger retry policy
                  and all services are derived from it here, not from
                  module globals.
    """
    config = settings or default_settings

    app = FastAPI(
        title="ImgBed API",
        description=(
            "Image hosting: upload with optional transcoding, public retrieval "
            "by identifier, and authenticated administrative preview."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── Services ──────────────────────────────────────────────────────────
    engine = build_engine(config)
    storage = FileService(config.upload_dir)
    ledger = ImageLedger(config)
    app.state.settings = config
    app.state.engine = engine
    app.state.session_factory = build_session_factory(engine)
    app.state.storage = storage
    app.state.ledger = ledger
    app.state.auth_service = AuthService.from_settings(config)
    app.state.upload_service = UploadService(storage, config, ledger=ledger)
    app.state.retrieval_service = RetrievalService(storage, config, ledger=ledger)

    # ── Register Middleware ───────────────────────────────────────────────
    # Last added runs first: RateLimit → RequestID → Logging → CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After", "Content-Length"],
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        max_requests=config.rate_limit_requests,
        window=config.rate_limit_window,
    )

    # ── Register Exception Handlers ───────────────────────────────────────
    register_exception_handlers(app)

    # ── Register Routes ───────────────────────────────────────────────────
    app.include_router(upload.router)
    app.include_router(images.public_router)
    app.include_router(images.router)
    app.include_router(health.router)

    return app


app = create_app()
