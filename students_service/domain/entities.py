from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    ADMIN = "admin"
    USER = "user"


@dataclass(frozen=True)
class Student:
    id: str
    name: str
    age: int
    grade: str
    email: str
    created_at: datetime


@dataclass(frozen=True)
class User:
    id: int | None
    name: str
    email: str
    role: str = Role.USER.value


@dataclass(frozen=True)
class Principal:
    """Аутентифицированный пользователь запроса. Хэш пароля сюда не попадает."""
    id: int
    name: str
    email: str
    role: str
