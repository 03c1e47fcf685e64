import time

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from ..config import settings

# SQLSTATE query_canceled у PostgreSQL
PG_QUERY_CANCELED = "57014"
# как часто SQLite проверяет дедлайн (в инструкциях VM)
SQLITE_PROGRESS_STEPS = 1000


def install_operation_deadline(engine: Engine, seconds: float) -> None:
    """Ограничивает время каждого SQL-запроса на уровне хранилища."""
    if engine.dialect.name == "postgresql":
        @event.listens_for(engine, "connect")
        def _set_statement_timeout(dbapi_conn, _record):
            cursor = dbapi_conn.cursor()
            cursor.execute(f"SET statement_timeout = {int(seconds * 1000)}")
            cursor.close()

    elif engine.dialect.name == "sqlite":
        @event.listens_for(engine, "before_cursor_execute")
        def _arm_deadline(conn, cursor, statement, parameters, context, executemany):
            deadline = time.monotonic() + seconds
            cursor.connection.set_progress_handler(
                lambda: time.monotonic() > deadline, SQLITE_PROGRESS_STEPS
            )

        @event.listens_for(engine, "after_cursor_execute")
        def _disarm_deadline(conn, cursor, statement, parameters, context, executemany):
            cursor.connection.set_progress_handler(None, 0)


def is_deadline_exceeded(exc: DBAPIError) -> bool:
    orig = exc.orig
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code == PG_QUERY_CANCELED:
        return True
    return "interrupted" in str(orig).lower()


connect_args = {}
if settings.DATABASE_URL.startswith("postgresql"):
    connect_args = {"client_encoding": "utf8"}
elif settings.DATABASE_URL.startswith("sqlite"):
    connect_args = {"check_same_thread": False}

engine = create_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,
    pool_size=settings.DB_POOL_SIZE,
    max_overflow=settings.DB_MAX_OVERFLOW,
    pool_timeout=settings.DB_POOL_TIMEOUT,
    pool_recycle=3600,
    connect_args=connect_args,
    echo=False
)
install_operation_deadline(engine, settings.DB_OPERATION_TIMEOUT_SECONDS)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)


class Base(DeclarativeBase): pass


def get_db():
    db = SessionLocal()
    try: yield db
    finally: db.close()
