from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.exc import IntegrityError, OperationalError, TimeoutError as PoolTimeoutError

from students_service.application.dto import PageRequest
from students_service.domain.errors import (
    DeadlineExceededError,
    DuplicateKeyError,
    MalformedIdError,
    NotFoundError,
    StoreError,
    ValidationFailure,
)
from students_service.infrastructure.db import install_operation_deadline, is_deadline_exceeded
from students_service.infrastructure.repositories import StudentRepository, UserRepository, store_errors

ENDLESS_QUERY = (
    "WITH RECURSIVE c(x) AS (SELECT 1 UNION ALL SELECT x + 1 FROM c) "
    "SELECT count(*) FROM c"
)


def _student(**overrides):
    fields = {"name": "Ada", "age": 30, "grade": "A", "email": "ada@example.com"}
    fields.update(overrides)
    return fields


@pytest.fixture
def repo(db_session):
    return StudentRepository(db_session)


def test_create_and_get(repo):
    """Тест создания и чтения студента"""
    created = repo.create(_student(name="  Ada  ", email="ADA@Example.com"))
    assert created.name == "Ada"
    assert created.email == "ada@example.com"
    assert created.created_at is not None

    assert repo.get_by_id(created.id) == created


def test_get_accepts_dashed_uuid(repo):
    created = repo.create(_student())
    dashed = f"{created.id[:8]}-{created.id[8:12]}-{created.id[12:16]}-{created.id[16:20]}-{created.id[20:]}"
    assert repo.get_by_id(dashed).id == created.id


def test_duplicate_email_case_insensitive(repo):
    """Тест уникальности email без учёта регистра"""
    repo.create(_student(email="A@b.com"))
    with pytest.raises(DuplicateKeyError):
        repo.create(_student(name="Other", email="a@B.com"))

    # сессия пригодна для работы после отката
    assert repo.list(None, PageRequest(1, 10)).total == 1


def test_create_collects_all_problems(repo):
    with pytest.raises(ValidationFailure) as exc_info:
        repo.create({"name": "", "age": True, "email": "x"})
    assert exc_info.value.errors == [
        "name is required",
        "grade is required",
        "age must be an integer",
        "x is not a valid email address!",
    ]


def test_negative_age_message(repo):
    with pytest.raises(ValidationFailure) as exc_info:
        repo.create(_student(age=-1))
    assert exc_info.value.errors == ["age (-1) is less than minimum allowed value (0)"]


def test_list_bounds_and_pages(repo):
    for i in range(7):
        repo.create(_student(name=f"S{i}", email=f"s{i}@example.com"))

    page = repo.list(None, PageRequest(1, 3))
    assert len(page.items) == 3
    assert page.total == 7
    assert page.pages == 3

    last = repo.list(None, PageRequest(3, 3))
    assert len(last.items) == 1

    beyond = repo.list(None, PageRequest(4, 3))
    assert beyond.items == []
    assert beyond.total == 7


def test_list_pages_do_not_overlap(repo):
    for i in range(5):
        repo.create(_student(name=f"S{i}", email=f"s{i}@example.com"))

    seen = []
    for n in (1, 2, 3):
        seen.extend(s.id for s in repo.list(None, PageRequest(n, 2)).items)
    assert len(seen) == 5
    assert len(set(seen)) == 5


def test_list_search_escapes_wildcards(repo):
    repo.create(_student(name="100% Ada", email="pct@example.com"))
    repo.create(_student(name="Ada_Bob", email="under@example.com"))
    repo.create(_student(name="Adam", email="adam@example.com"))

    assert [s.name for s in repo.list("0% a", PageRequest(1, 10)).items] == ["100% Ada"]
    assert [s.name for s in repo.list("a_b", PageRequest(1, 10)).items] == ["Ada_Bob"]


def test_update_merges_with_stored_record(repo):
    created = repo.create(_student())
    updated = repo.update_by_id(created.id, {"age": 31, "id": "ignored", "created_at": None})
    assert updated.age == 31
    assert updated.name == "Ada"
    assert updated.id == created.id
    assert updated.created_at == created.created_at


def test_update_to_taken_email(repo):
    repo.create(_student(email="one@example.com"))
    second = repo.create(_student(email="two@example.com"))
    with pytest.raises(DuplicateKeyError):
        repo.update_by_id(second.id, {"email": "ONE@example.com"})


def test_missing_student(repo):
    """Тест операций с несуществующим студентом"""
    missing = "f" * 32
    with pytest.raises(NotFoundError):
        repo.get_by_id(missing)
    with pytest.raises(NotFoundError):
        repo.update_by_id(missing, {"name": "X"})
    with pytest.raises(NotFoundError):
        repo.delete_by_id(missing)


def test_malformed_id(repo):
    for bad in ("", "123", "not-an-id", "g" * 32):
        with pytest.raises(MalformedIdError):
            repo.get_by_id(bad)


def test_delete(repo):
    created = repo.create(_student())
    repo.delete_by_id(created.id)
    with pytest.raises(NotFoundError):
        repo.get_by_id(created.id)


def test_user_repository(db_session):
    users = UserRepository(db_session)
    assert users.get_by_email("u@example.com") is None

    user = users.create("U", "u@example.com", "hash")
    assert user.role == "user"
    assert users.get_by_email("u@example.com") == user

    found_user, password_hash = users.get_credentials("u@example.com")
    assert found_user == user
    assert password_hash == "hash"

    principal = users.get_principal(user.id)
    assert principal.email == "u@example.com"
    assert not hasattr(principal, "password_hash")
    assert users.get_principal(user.id + 100) is None


# --- Классификация ошибок хранилища


def test_store_errors_unique_violation():
    db = MagicMock()
    with pytest.raises(DuplicateKeyError):
        with store_errors(db, "create"):
            raise IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed: students.email"))
    db.rollback.assert_called_once()


def test_store_errors_other_integrity_error():
    db = MagicMock()
    with pytest.raises(StoreError):
        with store_errors(db, "create"):
            raise IntegrityError("INSERT", {}, Exception("NOT NULL constraint failed: students.name"))
    db.rollback.assert_called_once()


def test_store_errors_interrupted_query():
    db = MagicMock()
    with pytest.raises(DeadlineExceededError) as exc_info:
        with store_errors(db, "list"):
            raise OperationalError("SELECT", {}, Exception("interrupted"))
    assert exc_info.value.message == "Database operation timed out"
    db.rollback.assert_called_once()


def test_store_errors_postgres_cancel():
    orig = Exception("canceling statement due to statement timeout")
    orig.pgcode = "57014"
    db = MagicMock()
    with pytest.raises(DeadlineExceededError):
        with store_errors(db, "list"):
            raise OperationalError("SELECT", {}, orig)


def test_store_errors_pool_exhausted():
    db = MagicMock()
    with pytest.raises(DeadlineExceededError):
        with store_errors(db, "get"):
            raise PoolTimeoutError("QueuePool limit reached")
    db.rollback.assert_called_once()


def test_store_errors_other_operational_error():
    db = MagicMock()
    with pytest.raises(StoreError) as exc_info:
        with store_errors(db, "get"):
            raise OperationalError("SELECT", {}, Exception("disk I/O error"))
    # детали БД не попадают в сообщение
    assert exc_info.value.message == "Database operation failed"


def test_store_errors_passes_app_errors_through():
    db = MagicMock()
    with pytest.raises(NotFoundError):
        with store_errors(db, "get"):
            raise NotFoundError()
    db.rollback.assert_not_called()


# --- Дедлайн операций


def test_operation_deadline_interrupts_long_query():
    """Бесконечный запрос прерывается по дедлайну"""
    engine = create_engine("sqlite://")
    install_operation_deadline(engine, 0.05)
    try:
        with engine.connect() as conn:
            with pytest.raises(OperationalError) as exc_info:
                conn.execute(text(ENDLESS_QUERY)).scalar()
            assert is_deadline_exceeded(exc_info.value)

            # следующий запрос получает новый дедлайн
            assert conn.execute(text("SELECT 1")).scalar() == 1
    finally:
        engine.dispose()


def test_operation_deadline_leaves_fast_queries_alone():
    engine = create_engine("sqlite://")
    install_operation_deadline(engine, 1.0)
    try:
        with engine.connect() as conn:
            assert conn.execute(text("SELECT 40 + 2")).scalar() == 42
    finally:
        engine.dispose()
