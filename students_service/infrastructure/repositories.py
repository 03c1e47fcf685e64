import uuid
from contextlib import contextmanager
from typing import Any

import structlog
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from .db import is_deadline_exceeded
from .metrics import db_queries_total
from .models import StudentORM, UserORM
from ..application.dto import Page, PageRequest
from ..application.use_cases.register_user import IUserRepository
from ..domain.entities import Principal, Student, User
from ..domain.errors import (
    DeadlineExceededError,
    DuplicateKeyError,
    MalformedIdError,
    NotFoundError,
    StoreError,
)
from ..domain.validation import STUDENT_FIELDS, validate_student

logger = structlog.get_logger()


def to_student(row: StudentORM) -> Student:
    return Student(
        id=row.id, name=row.name, age=row.age, grade=row.grade,
        email=row.email, created_at=row.created_at,
    )


def to_user(u: UserORM) -> User:
    return User(id=u.id, name=u.name, email=u.email, role=u.role)


def _is_unique_violation(exc: IntegrityError) -> bool:
    code = getattr(exc.orig, "pgcode", None) or getattr(exc.orig, "sqlstate", None)
    return code == "23505" or "unique" in str(exc.orig).lower()


def _parse_id(student_id: str) -> str:
    try:
        return uuid.UUID(student_id).hex
    except (TypeError, ValueError, AttributeError):
        raise MalformedIdError()


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


@contextmanager
def store_errors(db: Session, operation: str):
    """Переводит ошибки хранилища в типизированные ошибки сервиса.

    После любой ошибки сессия откатывается. Повторов нет.
    """
    db_queries_total.labels(operation=operation).inc()
    try:
        yield
    except IntegrityError as e:
        db.rollback()
        if _is_unique_violation(e):
            raise DuplicateKeyError() from e
        raise StoreError() from e
    except PoolTimeoutError as e:
        db.rollback()
        logger.warning("db_pool_exhausted", operation=operation)
        raise DeadlineExceededError("Database operation timed out") from e
    except OperationalError as e:
        db.rollback()
        if is_deadline_exceeded(e):
            logger.warning("db_operation_deadline_exceeded", operation=operation)
            raise DeadlineExceededError("Database operation timed out") from e
        raise StoreError() from e
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError() from e


class StudentRepository:
    def __init__(self, db: Session): self.db = db

    def list(self, search: str | None, page: PageRequest) -> Page[Student]:
        query = select(StudentORM)
        count_query = select(func.count()).select_from(StudentORM)
        if search:
            pattern = f"%{_escape_like(search)}%"
            condition = or_(
                StudentORM.name.ilike(pattern, escape="\\"),
                StudentORM.email.ilike(pattern, escape="\\"),
            )
            query = query.where(condition)
            count_query = count_query.where(condition)
        query = (query.order_by(StudentORM.created_at.desc(), StudentORM.id)
                 .offset(page.skip).limit(page.limit))
        with store_errors(self.db, "list"):
            rows = self.db.execute(query).scalars().all()
            total = self.db.execute(count_query).scalar_one()
        return Page(items=[to_student(r) for r in rows], total=total, request=page)

    def _get_row(self, student_id: str) -> StudentORM:
        key = _parse_id(student_id)
        with store_errors(self.db, "get"):
            row = self.db.get(StudentORM, key)
        if row is None:
            raise NotFoundError()
        return row

    def get_by_id(self, student_id: str) -> Student:
        return to_student(self._get_row(student_id))

    def create(self, fields: dict[str, Any]) -> Student:
        values = validate_student(fields)
        row = StudentORM(**values)
        with store_errors(self.db, "create"):
            self.db.add(row); self.db.commit(); self.db.refresh(row)
        logger.info("student_created", student_id=row.id)
        return to_student(row)

    def update_by_id(self, student_id: str, fields: dict[str, Any]) -> Student:
        row = self._get_row(student_id)
        # проверяем запись целиком, а не только пришедшие поля
        merged = {f: getattr(row, f) for f in STUDENT_FIELDS}
        merged.update({k: v for k, v in fields.items() if k in STUDENT_FIELDS})
        values = validate_student(merged)
        for key, value in values.items():
            setattr(row, key, value)
        with store_errors(self.db, "update"):
            self.db.commit(); self.db.refresh(row)
        logger.info("student_updated", student_id=row.id)
        return to_student(row)

    def delete_by_id(self, student_id: str) -> None:
        row = self._get_row(student_id)
        with store_errors(self.db, "delete"):
            self.db.delete(row); self.db.commit()
        logger.info("student_deleted", student_id=student_id)


class UserRepository(IUserRepository):
    def __init__(self, db: Session): self.db = db

    def get_by_email(self, email: str) -> User | None:
        with store_errors(self.db, "user_by_email"):
            row = self.db.query(UserORM).filter(UserORM.email == email).first()
        return to_user(row) if row else None

    def get_credentials(self, email: str) -> tuple[User, str] | None:
        with store_errors(self.db, "user_by_email"):
            row = self.db.query(UserORM).filter(UserORM.email == email).first()
        return (to_user(row), row.password_hash) if row else None

    def get_principal(self, user_id: int) -> Principal | None:
        with store_errors(self.db, "principal"):
            row = self.db.get(UserORM, user_id)
        if row is None:
            return None
        return Principal(id=row.id, name=row.name, email=row.email, role=row.role)

    def create(self, name: str, email: str, password_hash: str, role: str = "user") -> User:
        row = UserORM(name=name, email=email, password_hash=password_hash, role=role)
        with store_errors(self.db, "user_create"):
            self.db.add(row); self.db.commit(); self.db.refresh(row)
        return to_user(row)
