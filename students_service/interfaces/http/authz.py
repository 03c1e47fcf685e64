from typing import Collection

import structlog
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ...domain.entities import Principal
from ...domain.errors import (
    AppError,
    ExpiredCredentialError,
    ForbiddenError,
    InvalidCredentialError,
    MissingCredentialError,
    NotAuthenticatedError,
    UnknownPrincipalError,
)
from ...infrastructure.metrics import auth_rejections_total
from ...infrastructure.repositories import UserRepository
from ...infrastructure.security import decode_token
from .deps import get_user_repository

logger = structlog.get_logger()

# auto_error=False: без заголовка отвечаем своим 401, а не 403 от HTTPBearer
bearer = HTTPBearer(auto_error=False)

CREDENTIAL_ERRORS = (
    MissingCredentialError,
    InvalidCredentialError,
    ExpiredCredentialError,
    UnknownPrincipalError,
)


def _reject(request: Request, exc: AppError) -> AppError:
    auth_rejections_total.labels(kind=exc.kind.value).inc()
    logger.info("auth_rejected", kind=exc.kind.value, path=request.url.path)
    return exc


def authenticate(
    creds: HTTPAuthorizationCredentials | None,
    users: UserRepository,
) -> Principal:
    """Проверяет bearer-токен и находит пользователя, которому он выдан."""
    if creds is None or not creds.credentials:
        raise MissingCredentialError()
    sub = decode_token(creds.credentials)
    try:
        user_id = int(sub)
    except ValueError:
        raise InvalidCredentialError()
    principal = users.get_principal(user_id)
    if principal is None:
        raise UnknownPrincipalError()
    return principal


def get_current_principal(
    request: Request,
    creds: HTTPAuthorizationCredentials | None = Depends(bearer),
    users: UserRepository = Depends(get_user_repository),
) -> Principal:
    try:
        return authenticate(creds, users)
    except CREDENTIAL_ERRORS as e:
        raise _reject(request, e)


def authorize(principal: Principal | None, allowed_roles: Collection[str]) -> Principal:
    if principal is None:
        raise NotAuthenticatedError()
    if principal.role not in allowed_roles:
        raise ForbiddenError.for_role(principal.role)
    return principal


def require_roles(*roles: str):
    """Зависимость для маршрута: пускает только перечисленные роли."""
    allowed = frozenset(roles)

    def _guard(request: Request, principal: Principal = Depends(get_current_principal)) -> Principal:
        try:
            return authorize(principal, allowed)
        except AppError as e:
            raise _reject(request, e)

    return _guard
