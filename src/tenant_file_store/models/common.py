from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


@dataclass(frozen=True)
class Result(Generic[T]):
    """
    Результат операции пайплайна: либо value, либо человекочитаемая ошибка.
    Никаких HTTP-кодов - их назначает вышестоящий слой.
    """
    succeeded: bool
    value: Optional[T] = None
    error: Optional[str] = None

    @classmethod
    def success(cls, value: Optional[T] = None) -> "Result[T]":
        return cls(True, value, None)

    @classmethod
    def failure(cls, error: str) -> "Result[T]":
        error = (error or "").strip() or "Unknown error."
        return cls(False, None, error)

    def __bool__(self) -> bool:
        return self.succeeded


class Page(BaseModel, Generic[T]):
    items: list[T]
    total: int
    limit: Optional[int] = None
    offset: int = 0

    @property
    def has_next(self) -> bool:
        if self.limit is None:
            return False
        return self.offset + len(self.items) < self.total
