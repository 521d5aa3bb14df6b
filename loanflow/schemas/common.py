from __future__ import annotations

from typing import Any, Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class ActionResult(BaseModel, Generic[T]):
    """Result shape for action-style endpoints: never raises to the caller."""

    success: bool
    error: str | None = None
    data: T | None = None

    @classmethod
    def ok(cls, data: Any = None) -> "ActionResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> "ActionResult":
        return cls(success=False, error=error)


class CountResult(BaseModel):
    count: int
