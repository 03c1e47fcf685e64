"""ASGI-middleware конвейера запроса.

Порядок подключения задаётся в ``main.create_app``: заголовки безопасности,
rate limiting, санитизация входа, защита от дублирования параметров, дедлайн.
"""
import asyncio
import json
import re
from typing import Any
from urllib.parse import parse_qsl, urlencode

import structlog
from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from ...domain.errors import DeadlineExceededError, ValidationFailure
from ...infrastructure.metrics import request_timeouts_total
from .error_handlers import error_response

logger = structlog.get_logger()

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=15552000; includeSubDomains",
    "X-DNS-Prefetch-Control": "off",
    "X-Download-Options": "noopen",
    "X-Permitted-Cross-Domain-Policies": "none",
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
}
# Swagger UI грузит ресурсы с CDN, поэтому CSP только для JSON API
API_CSP = "default-src 'self'; frame-ancestors 'self'; object-src 'none'"

SCRIPT_RE = re.compile(r"<script\b[^>]*>.*?(</script\s*>|$)", re.IGNORECASE | re.DOTALL)

TIMEOUT_MESSAGE = "Request timeout - server took too long to respond"
BODY_TOO_LARGE_MESSAGE = "Request body too large"


class SecurityHeadersMiddleware:
    def __init__(self, app: ASGIApp, csp_prefix: str = "/api") -> None:
        self.app = app
        self.csp_prefix = csp_prefix

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        async def send_with_headers(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                for name, value in SECURITY_HEADERS.items():
                    headers[name] = value
                for name in ("server", "x-powered-by"):
                    if name in headers:
                        del headers[name]
                if scope["path"].startswith(self.csp_prefix):
                    headers["Content-Security-Policy"] = API_CSP
            await send(message)

        await self.app(scope, receive, send_with_headers)


def _is_operator_key(key: str) -> bool:
    return key.startswith("$") or "." in key


def clean_text(value: str) -> str:
    value = SCRIPT_RE.sub("", value)
    return value.replace("<", "&lt;").replace(">", "&gt;")


def sanitize(value: Any) -> Any:
    """Убирает ключи-операторы ($..., a.b) и script-содержимое из всех строк."""
    if isinstance(value, str):
        return clean_text(value)
    if isinstance(value, dict):
        return {k: sanitize(v) for k, v in value.items() if not _is_operator_key(k)}
    if isinstance(value, list):
        return [sanitize(v) for v in value]
    return value


def _rewrite_query(scope: Scope, transform) -> None:
    raw = scope.get("query_string", b"")
    if not raw:
        return
    pairs = parse_qsl(raw.decode("latin-1"), keep_blank_values=True)
    new_pairs = transform(pairs)
    if new_pairs != pairs:
        scope["query_string"] = urlencode(new_pairs).encode("latin-1")


def _declared_length(scope: Scope) -> int:
    for name, value in scope.get("headers", []):
        if name == b"content-length":
            try:
                return int(value)
            except ValueError:
                return 0
    return 0


def _is_json(scope: Scope) -> bool:
    for name, value in scope.get("headers", []):
        if name == b"content-type":
            return value.split(b";")[0].strip().lower() == b"application/json"
    return False


class InputSanitizerMiddleware:
    def __init__(self, app: ASGIApp, max_body_bytes: int = 100 * 1024) -> None:
        self.app = app
        self.max_body_bytes = max_body_bytes

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        _rewrite_query(scope, lambda pairs: [
            (k, clean_text(v)) for k, v in pairs if not _is_operator_key(k)
        ])
        if not _is_json(scope):
            await self.app(scope, receive, send)
            return

        if _declared_length(scope) > self.max_body_bytes:
            await self._reject_too_large(scope, receive, send)
            return

        body = b""
        more_body = True
        while more_body:
            message = await receive()
            if message["type"] != "http.request":
                break
            body += message.get("body", b"")
            if len(body) > self.max_body_bytes:
                await self._reject_too_large(scope, receive, send)
                return
            more_body = message.get("more_body", False)

        try:
            data = json.loads(body)
        except ValueError:
            # невалидный JSON отдаём как есть, его отклонит валидация FastAPI
            new_body = body
        else:
            new_body = json.dumps(sanitize(data)).encode("utf-8")

        scope["headers"] = [
            (k, v) for k, v in scope["headers"] if k != b"content-length"
        ] + [(b"content-length", str(len(new_body)).encode("latin-1"))]

        replayed = False

        async def replay() -> Message:
            nonlocal replayed
            if not replayed:
                replayed = True
                return {"type": "http.request", "body": new_body, "more_body": False}
            return await receive()

        await self.app(scope, replay, send)

    async def _reject_too_large(self, scope: Scope, receive: Receive, send: Send) -> None:
        logger.warning("request_body_too_large", path=scope["path"], limit_bytes=self.max_body_bytes)
        response = error_response(ValidationFailure(BODY_TOO_LARGE_MESSAGE))
        await response(scope, receive, send)


class ParameterPollutionMiddleware:
    """Повторяющиеся query-параметры схлопываются, побеждает последнее значение."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http":
            _rewrite_query(scope, lambda pairs: list(dict(pairs).items()))
        await self.app(scope, receive, send)


class RequestTimeoutMiddleware:
    """Дедлайн на запрос и гарантия не более одного ответа.

    Если обработчик не успел, клиент получает 408, а всё, что обработчик
    попытается записать позже, отбрасывается.
    """

    def __init__(
        self,
        app: ASGIApp,
        timeout: float,
        route_timeouts: dict[str, float] | None = None,
    ) -> None:
        self.app = app
        self.timeout = timeout
        self.route_timeouts = route_timeouts or {}

    def deadline_for(self, path: str) -> float:
        for prefix, seconds in self.route_timeouts.items():
            if path == prefix or path.startswith(prefix.rstrip("/") + "/"):
                return seconds
        return self.timeout

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        deadline = self.deadline_for(scope["path"])
        response_started = False
        timed_out = False

        async def guarded_send(message: Message) -> None:
            nonlocal response_started
            if timed_out:
                logger.warning("late_response_suppressed", path=scope["path"], message_type=message["type"])
                return
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        task = asyncio.ensure_future(self.app(scope, receive, guarded_send))
        done, _ = await asyncio.wait({task}, timeout=deadline)
        if task in done:
            task.result()
            return

        timed_out = True
        request_timeouts_total.inc()
        client = scope.get("client")
        logger.error(
            "request_timeout",
            method=scope["method"],
            path=scope["path"],
            client=client[0] if client else None,
            timeout_seconds=deadline,
        )
        if not response_started:
            response = error_response(DeadlineExceededError(TIMEOUT_MESSAGE))
            await response(scope, receive, send)

        task.cancel()
        await asyncio.wait({task})
        if not task.cancelled() and task.exception() is not None:
            logger.error("request_failed_after_timeout", path=scope["path"], exc_info=task.exception())
