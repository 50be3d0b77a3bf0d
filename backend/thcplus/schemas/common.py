from __future__ import annotations

from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class ActionResponse(BaseModel, Generic[T]):
    """Uniform envelope for form-facing actions; `error` is always safe to show to the visitor."""

    success: bool
    message: str | None = None
    error: str | None = None
    data: T | None = None
