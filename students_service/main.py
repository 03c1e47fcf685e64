import time
import logging
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from .application.use_cases.register_user import EnsureAdmin
from .config import Settings, settings as default_settings
from .infrastructure import db
from .infrastructure.models import Base
from .infrastructure.repositories import UserRepository
from .infrastructure.security import PasswordHasher
from .infrastructure.metrics import (
    metrics_endpoint,
    http_requests_total,
    http_request_duration_seconds
)
from .interfaces.http.error_handlers import register_error_handlers
from .interfaces.http.middleware import (
    InputSanitizerMiddleware,
    ParameterPollutionMiddleware,
    RequestTimeoutMiddleware,
    SecurityHeadersMiddleware,
)
from .interfaces.http.rate_limit import RateLimitMiddleware, build_limiter
from .interfaces.http.routers import auth as auth_router
from .interfaces.http.routers import students as students_router

VERSION = "1.0.0"

logger = structlog.get_logger()


def configure_logging(level_name: str) -> None:
    # Настройка структурированного логирования
    log_level = getattr(logging, level_name.upper(), logging.INFO)
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def seed_admin(session_factory, settings: Settings):
    """Заводит администратора из ADMIN_EMAIL/ADMIN_PASSWORD, если они заданы."""
    if not (settings.ADMIN_EMAIL and settings.ADMIN_PASSWORD):
        return None
    with session_factory() as session:
        admin = EnsureAdmin(UserRepository(session), PasswordHasher()).execute(
            settings.ADMIN_NAME, settings.ADMIN_EMAIL, settings.ADMIN_PASSWORD
        )
    if admin.role != "admin":
        logger.warning("admin_email_taken_by_user", email=admin.email)
    else:
        logger.info("admin_ready", email=admin.email)
    return admin


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting students service", version=VERSION)
    Base.metadata.create_all(bind=db.engine)
    with db.engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    logger.info("Database connection established")
    seed_admin(db.SessionLocal, app.state.settings)
    yield
    db.engine.dispose()
    logger.info("Students service stopped")


def create_app(settings: Settings = default_settings) -> FastAPI:
    configure_logging(settings.LOG_LEVEL)

    app = FastAPI(
        title="Student Management API",
        description="A RESTful API for managing student records",
        version=VERSION,
        docs_url="/api-docs",
        lifespan=lifespan,
    )

    # лимитер создаётся один раз на приложение и хранится в app.state
    limiter = build_limiter(settings)
    app.state.settings = settings
    app.state.limiter = limiter
    register_error_handlers(app)

    # add_middleware: каждый следующий оборачивает предыдущий,
    # поэтому запрос проходит их в обратном порядке
    app.add_middleware(
        RequestTimeoutMiddleware,
        timeout=settings.REQUEST_TIMEOUT_SECONDS,
        route_timeouts={"/api/students": settings.DATA_REQUEST_TIMEOUT_SECONDS},
    )
    app.add_middleware(ParameterPollutionMiddleware)
    app.add_middleware(InputSanitizerMiddleware, max_body_bytes=settings.MAX_BODY_BYTES)
    app.add_middleware(RateLimitMiddleware, limiter=limiter, limit=settings.RATE_LIMIT)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
        allow_credentials=True,
        max_age=86400,
    )

    # Добавляем middleware для правильной кодировки и метрик
    @app.middleware("http")
    async def add_charset_header(request: Request, call_next):
        start_time = time.time()
        method = request.method

        response = await call_next(request)

        if response.headers.get("content-type", "").startswith("application/json"):
            response.headers["content-type"] = "application/json; charset=utf-8"

        # шаблон маршрута вместо пути, чтобы id не раздували метрики
        route = request.scope.get("route")
        path = getattr(route, "path", request.url.path)

        # Метрики
        duration = time.time() - start_time
        status_code = response.status_code
        http_requests_total.labels(method=method, endpoint=path, status=status_code).inc()
        http_request_duration_seconds.labels(method=method, endpoint=path).observe(duration)

        # Логирование
        logger.info(
            "http_request",
            method=method,
            path=request.url.path,
            status_code=status_code,
            duration_ms=round(duration * 1000, 2)
        )

        return response

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.get("/metrics")
    def metrics():
        """Prometheus metrics endpoint"""
        return metrics_endpoint()

    app.include_router(auth_router.router)
    app.include_router(students_router.router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=default_settings.HOST, port=default_settings.PORT)
