import os
import sys
import pytest

CURRENT_DIR = os.path.dirname(__file__)
SERVICE_ROOT = os.path.dirname(CURRENT_DIR)
if SERVICE_ROOT not in sys.path:
    sys.path.insert(0, SERVICE_ROOT)

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from students_service.config import Settings
from students_service.infrastructure.db import Base, get_db, install_operation_deadline
from students_service.infrastructure.models import UserORM
from students_service.infrastructure.security import create_access_token
from students_service.main import create_app

# Тестовая БД в памяти, одно соединение на все потоки
test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
install_operation_deadline(test_engine, 5.0)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(autouse=True)
def tables():
    """Чистые таблицы перед каждым тестом"""
    Base.metadata.drop_all(bind=test_engine)
    Base.metadata.create_all(bind=test_engine)
    yield
    Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def db_session():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def settings():
    # высокий лимит, чтобы rate limiting не мешал обычным тестам
    return Settings(RATE_LIMIT="1000/15 minutes")


@pytest.fixture
def app(settings):
    application = create_app(settings)
    application.dependency_overrides[get_db] = override_get_db
    return application


@pytest.fixture
def client(app):
    return TestClient(app)


def make_user(db, email: str, role: str, name: str = "Test User") -> int:
    row = UserORM(name=name, email=email, password_hash="not-used", role=role)
    db.add(row)
    db.commit()
    db.refresh(row)
    return row.id


@pytest.fixture
def admin_headers(db_session):
    user_id = make_user(db_session, "admin@example.com", "admin", name="Admin")
    return {"Authorization": f"Bearer {create_access_token(sub=str(user_id))}"}


@pytest.fixture
def user_headers(db_session):
    user_id = make_user(db_session, "user@example.com", "user", name="Regular")
    return {"Authorization": f"Bearer {create_access_token(sub=str(user_id))}"}
