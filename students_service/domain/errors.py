"""Типизированные ошибки сервиса.

Каждая ошибка создаётся там, где произошёл сбой (репозиторий, проверка токена,
проверка роли), и несёт поле ``kind``. В HTTP-ответ её превращает только
обработчик из ``interfaces/http/error_handlers.py``.
"""
from enum import Enum


class ErrorKind(str, Enum):
    VALIDATION_FAILURE = "validation_failure"
    DUPLICATE_KEY = "duplicate_key"
    MALFORMED_IDENTIFIER = "malformed_identifier"
    MISSING_CREDENTIAL = "missing_credential"
    INVALID_CREDENTIAL = "invalid_credential"
    EXPIRED_CREDENTIAL = "expired_credential"
    UNKNOWN_PRINCIPAL = "unknown_principal"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    UNCLASSIFIED = "unclassified"


class AppError(Exception):
    kind: ErrorKind = ErrorKind.UNCLASSIFIED
    default_message: str = "Something went wrong on the server"

    def __init__(self, message: str | None = None, errors: list[str] | None = None):
        self.message = message or self.default_message
        self.errors = errors
        super().__init__(self.message)


class ValidationFailure(AppError):
    kind = ErrorKind.VALIDATION_FAILURE
    default_message = "Validation error occurred"


class DuplicateKeyError(AppError):
    kind = ErrorKind.DUPLICATE_KEY
    default_message = "Email already exists"


class MalformedIdError(AppError):
    kind = ErrorKind.MALFORMED_IDENTIFIER
    default_message = "Invalid ID format"


class MissingCredentialError(AppError):
    kind = ErrorKind.MISSING_CREDENTIAL
    default_message = "No token provided"


class InvalidCredentialError(AppError):
    kind = ErrorKind.INVALID_CREDENTIAL
    default_message = "Invalid token"


class ExpiredCredentialError(AppError):
    kind = ErrorKind.EXPIRED_CREDENTIAL
    default_message = "Token expired"


class UnknownPrincipalError(AppError):
    kind = ErrorKind.UNKNOWN_PRINCIPAL
    default_message = "Invalid or expired token"


class NotAuthenticatedError(AppError):
    kind = ErrorKind.UNAUTHORIZED
    default_message = "Unauthorized access"


class ForbiddenError(AppError):
    kind = ErrorKind.FORBIDDEN
    default_message = "Forbidden"

    @classmethod
    def for_role(cls, role: str) -> "ForbiddenError":
        return cls(f"User role {role} is not authorized to access this route")


class NotFoundError(AppError):
    kind = ErrorKind.NOT_FOUND
    default_message = "Student not found"


class DeadlineExceededError(AppError):
    kind = ErrorKind.TIMEOUT
    default_message = "Request timed out"


class RateLimitedError(AppError):
    kind = ErrorKind.RATE_LIMITED
    default_message = "Too many requests from this IP, please try again after 15 minutes"


class StoreError(AppError):
    kind = ErrorKind.UNCLASSIFIED
    default_message = "Database operation failed"
