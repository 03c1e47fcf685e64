import structlog
from fastapi import Request
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.types import ASGIApp, Receive, Scope, Send

from ...config import Settings
from ...domain.errors import RateLimitedError
from ...infrastructure.metrics import rate_limited_requests_total
from .error_handlers import error_response

logger = structlog.get_logger()

API_PREFIX = "/api"


def build_limiter(settings: Settings) -> Limiter:
    """Фиксированное окно на адрес клиента. Счётчики живут в памяти процесса."""
    return Limiter(
        key_func=get_remote_address,
        storage_uri=settings.RATE_LIMIT_STORAGE_URI,
        strategy="fixed-window",
    )


def build_api_quota(limiter: Limiter, limit: str):
    # декорируется один раз на лимитер: у всех маршрутов /api общий счётчик
    @limiter.limit(limit)
    def api_quota(request: Request):
        return None

    return api_quota


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    rate_limited_requests_total.inc()
    logger.warning("rate_limited", client=get_remote_address(request), limit=str(exc.detail))
    return error_response(RateLimitedError())


class RateLimitMiddleware:
    """Ограничивает частоту запросов к /api до разбора маршрута.

    Запросы сверх лимита получают 429 и не доходят ни до аутентификации,
    ни до обработчика. /health, /metrics и документация не ограничиваются.
    """

    def __init__(self, app: ASGIApp, limiter: Limiter, limit: str, prefix: str = API_PREFIX) -> None:
        self.app = app
        self.prefix = prefix
        self.quota = build_api_quota(limiter, limit)

    def applies_to(self, path: str) -> bool:
        return path == self.prefix or path.startswith(self.prefix + "/")

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not self.applies_to(scope["path"]):
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        try:
            self.quota(request=request)
        except RateLimitExceeded as exc:
            response = rate_limit_exceeded_handler(request, exc)
            await response(scope, receive, send)
            return
        await self.app(scope, receive, send)
