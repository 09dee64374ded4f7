"""Caller-facing result wrapper for workflow operations."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

from src.exceptions import AppException

T = TypeVar("T")

GENERIC_ERROR_CODE = "INTERNAL_ERROR"


@dataclass
class ActionResult(Generic[T]):
    """Outcome of an operation: ``data`` on success, ``error``/``error_code`` otherwise."""

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None
    details: list[dict] | None = None

    @classmethod
    def ok(cls, data: T) -> ActionResult[T]:
        return cls(success=True, data=data)

    @classmethod
    def from_exception(cls, exc: AppException) -> ActionResult[T]:
        return cls(
            success=False,
            error=exc.message,
            error_code=exc.code,
            details=exc.details or None,
        )

    @classmethod
    def unexpected(cls) -> ActionResult[T]:
        return cls(
            success=False,
            error="An unexpected error occurred.",
            error_code=GENERIC_ERROR_CODE,
        )

    @property
    def status_code(self) -> int:
        """HTTP status matching ``error_code``."""
        if self.success:
            return 200
        for exc_cls in _all_subclasses(AppException):
            if exc_cls.code == self.error_code:
                return exc_cls.status_code
        return 500


def _all_subclasses(cls: type) -> list[type]:
    found = []
    for sub in cls.__subclasses__():
        found.append(sub)
        found.extend(_all_subclasses(sub))
    return found
