"""Единая точка перевода ошибок в HTTP-ответ.

Тело ответа всегда ``{"success": false, "message": ..., "errors"?: [...]}``.
Подробности (трейсбеки, исходные ошибки БД) пишутся только в лог.
"""
import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ...domain.errors import AppError, ErrorKind, ValidationFailure

logger = structlog.get_logger()

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION_FAILURE: status.HTTP_400_BAD_REQUEST,
    ErrorKind.DUPLICATE_KEY: status.HTTP_400_BAD_REQUEST,
    ErrorKind.MALFORMED_IDENTIFIER: status.HTTP_400_BAD_REQUEST,
    ErrorKind.MISSING_CREDENTIAL: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.INVALID_CREDENTIAL: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.EXPIRED_CREDENTIAL: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.UNKNOWN_PRINCIPAL: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.UNAUTHORIZED: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.TIMEOUT: status.HTTP_408_REQUEST_TIMEOUT,
    ErrorKind.RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorKind.UNCLASSIFIED: status.HTTP_500_INTERNAL_SERVER_ERROR,
}

SERVER_ERROR_MESSAGE = AppError.default_message


def envelope(message: str, errors: list[str] | None = None) -> dict:
    body = {"success": False, "message": message}
    if errors:
        body["errors"] = errors
    return body


def error_response(exc: AppError) -> JSONResponse:
    return JSONResponse(
        status_code=STATUS_BY_KIND[exc.kind],
        content=envelope(exc.message, exc.errors),
    )


def _log_failure(request: Request, exc: Exception, kind: ErrorKind) -> None:
    # сбой логирования не должен помешать отправке ответа
    try:
        if kind is ErrorKind.UNCLASSIFIED:
            logger.error(
                "request_failed",
                kind=kind.value,
                method=request.method,
                path=request.url.path,
                exc_info=exc,
            )
        else:
            logger.info(
                "request_failed",
                kind=kind.value,
                method=request.method,
                path=request.url.path,
                message=str(exc),
            )
    except Exception:
        pass


def validation_messages(exc: RequestValidationError) -> list[str]:
    messages = []
    for e in exc.errors():
        loc = [str(part) for part in e["loc"][1:]] or [str(p) for p in e["loc"]]
        messages.append(f"{'.'.join(loc)}: {e['msg']}")
    return messages


def register_error_handlers(app: FastAPI) -> None:
    """Register all global error handlers on the FastAPI app."""

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        _log_failure(request, exc, exc.kind)
        return error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        failure = ValidationFailure(errors=validation_messages(exc))
        _log_failure(request, failure, failure.kind)
        return error_response(failure)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content=envelope(str(exc.detail)),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception):
        """Catch-all: the client gets only the generic message."""
        _log_failure(request, exc, ErrorKind.UNCLASSIFIED)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=envelope(SERVER_ERROR_MESSAGE),
        )
