"""Global error handlers rendering the ``{"success": false, "error": ...}`` envelope."""

from __future__ import annotations

import re
from typing import Any, Optional

import asyncpg
from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from velonx.api.request_id import get_request_id
from velonx.community.domain.container import get_error_logger
from velonx.community.domain.exceptions import AppError
from velonx.infra.postgres import is_connection_error
from velonx.settings import settings

_SECRET_PATTERNS = (
    re.compile(r"(?i)(password|passwd|secret|token|api[_-]?key|authorization)(\s*[=:]\s*)(\S+)"),
    re.compile(r"(?i)(bearer\s+)([A-Za-z0-9\-_.=]+)"),
    re.compile(r"(postgres(?:ql)?://[^:/\s]+:)([^@\s]+)(@)"),
)

_HTTP_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    429: "RATE_LIMIT_EXCEEDED",
}


def scrub(text: str) -> str:
    """Mask credentials that leaked into an error message."""
    text = _SECRET_PATTERNS[0].sub(lambda m: f"{m.group(1)}{m.group(2)}[redacted]", text)
    text = _SECRET_PATTERNS[1].sub(lambda m: f"{m.group(1)}[redacted]", text)
    return _SECRET_PATTERNS[2].sub(lambda m: f"{m.group(1)}[redacted]{m.group(3)}", text)


def _scrub_details(details: Any) -> Any:
    if isinstance(details, str):
        return scrub(details)
    if isinstance(details, dict):
        return {key: _scrub_details(value) for key, value in details.items()}
    if isinstance(details, (list, tuple)):
        return [_scrub_details(item) for item in details]
    return details


def error_response(
    request: Request,
    status_code: int,
    code: str,
    message: str,
    details: Optional[Any] = None,
) -> JSONResponse:
    rid = get_request_id(request)
    if settings.is_prod():
        message = scrub(message)
        details = _scrub_details(details)
    body: dict[str, Any] = {"code": code, "message": message}
    if details is not None:
        body["details"] = jsonable_encoder(details)
    body["requestId"] = rid
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": body},
        headers={"X-Request-Id": rid},
    )


def _validation_details(exc: RequestValidationError) -> list[dict[str, Any]]:
    details = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        details.append({"field": ".".join(loc), "message": err.get("msg", "invalid")})
    return details


def _database_unavailable(request: Request, exc: Exception) -> JSONResponse:
    get_error_logger().log_database_connection_error(exc, request=request)
    return error_response(
        request,
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "DATABASE_CONNECTION_ERROR",
        "Database is temporarily unavailable",
    )


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):  # type: ignore[override]
        errors = get_error_logger()
        if exc.status_code >= 500:
            errors.error(exc.code, exc.message, exc, request=request)
        else:
            errors.warning(exc.code, exc.message, request=request, context={"status": exc.status_code})
        return error_response(request, exc.status_code, exc.code, exc.message, exc.details)

    @app.exception_handler(RequestValidationError)
    async def validation_exc_handler(request: Request, exc: RequestValidationError):  # type: ignore[override]
        details = _validation_details(exc)
        get_error_logger().log_validation_error([item["field"] for item in details], request=request)
        return error_response(
            request,
            status.HTTP_400_BAD_REQUEST,
            "VALIDATION_ERROR",
            "Validation failed",
            details,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exc_handler(request: Request, exc: StarletteHTTPException):  # type: ignore[override]
        code = _HTTP_CODES.get(exc.status_code, "HTTP_ERROR")
        message = exc.detail if isinstance(exc.detail, str) else code.replace("_", " ").capitalize()
        return error_response(request, exc.status_code, code, message)

    @app.exception_handler(asyncpg.exceptions.PostgresConnectionError)
    async def postgres_connection_handler(request: Request, exc: asyncpg.exceptions.PostgresConnectionError):  # type: ignore[override]
        return _database_unavailable(request, exc)

    @app.exception_handler(Exception)
    async def unhandled_exc_handler(request: Request, exc: Exception):  # type: ignore[override]
        if is_connection_error(exc):
            return _database_unavailable(request, exc)
        get_error_logger().error("INTERNAL_SERVER_ERROR", str(exc) or exc.__class__.__name__, exc, request=request)
        message = "An unexpected error occurred" if settings.is_prod() else (str(exc) or exc.__class__.__name__)
        return error_response(
            request,
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "INTERNAL_SERVER_ERROR",
            message,
        )
