"""Application entrypoint for the family Gmail token service."""

import logging
import time

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from gmail_connect.api import router as api_router
from gmail_connect.core.config import Settings, get_settings
from gmail_connect.core.db import create_tables
from gmail_connect.core.logging import configure_logging
from gmail_connect.services.admin_sessions import AdminSessionStore
from gmail_connect.services.rate_limit import FixedWindowRateLimiter
from gmail_connect.web import router as web_router

logger = logging.getLogger(__name__)

ERROR_CODE_MAP: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    422: "VALIDATION_ERROR",
    429: "RATE_LIMITED",
}


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance."""
    settings = get_settings()
    configure_logging(settings)

    application = FastAPI(title="Family Gmail Token Service", version=settings.version)
    application.state.refresh_limiter = FixedWindowRateLimiter(
        settings.refresh_rate_limit, settings.refresh_rate_window_seconds
    )
    application.state.admin_sessions = AdminSessionStore(settings.admin_session_ttl_seconds)

    _configure_cors(application, settings)
    _configure_request_logging(application)
    _configure_exception_handlers(application)

    application.include_router(web_router)
    application.include_router(api_router)

    @application.on_event("startup")
    async def _on_startup() -> None:  # pragma: no cover - exercised via uvicorn
        await create_tables()
        missing = get_settings().missing_required()
        if missing:
            logger.warning("Missing environment variables", extra={"missing": missing})
        else:
            logger.info("All required environment variables are set")

    return application


def _configure_cors(application: FastAPI, settings: Settings) -> None:
    if not settings.cors_origins:
        return

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


def _configure_request_logging(application: FastAPI) -> None:
    @application.middleware("http")
    async def log_request(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        logger.info(
            "%s %s",
            request.method,
            request.url.path,
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": round((time.perf_counter() - start) * 1000, 2),
            },
        )
        return response


def _configure_exception_handlers(application: FastAPI) -> None:
    application.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    application.add_exception_handler(RequestValidationError, _validation_exception_handler)
    application.add_exception_handler(Exception, _unhandled_exception_handler)


async def _http_exception_handler(_: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, StarletteHTTPException)
    if isinstance(exc.detail, dict):
        message = str(exc.detail.get("message", "")) or str(exc.detail)
        code = exc.detail.get(
            "code", ERROR_CODE_MAP.get(exc.status_code, f"HTTP_{exc.status_code}")
        )
    else:
        message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
        code = ERROR_CODE_MAP.get(exc.status_code, f"HTTP_{exc.status_code}")
    return _error_response(code, message, exc.status_code, headers=exc.headers)


async def _validation_exception_handler(_: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, RequestValidationError)
    logger.info("Validation error", extra={"errors": exc.errors()})
    return _error_response("VALIDATION_ERROR", "Validation error", status_code=422)


async def _unhandled_exception_handler(_: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled application error")
    return _error_response("INTERNAL_SERVER_ERROR", "Internal server error", status_code=500)


def _error_response(
    code: str,
    message: str,
    status_code: int,
    *,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": code, "message": message}},
        headers=headers,
    )


app = create_app()
