import math
from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class PageRequest:
    page: int = 1
    limit: int = 10

    @classmethod
    def build(cls, page: int, limit: int, max_limit: int) -> "PageRequest":
        # слишком большой limit не ошибка, а просто обрезается
        return cls(page=page, limit=min(limit, max_limit))

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit


@dataclass(frozen=True)
class Page(Generic[T]):
    items: list[T]
    total: int
    request: PageRequest

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.request.limit)


@dataclass
class RegisterUserInput:
    name: str
    email: str
    password: str
