from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")


class NoteError(StrEnum):
    UNAUTHORIZED = "unauthorized"
    VALIDATION = "validation"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INTERNAL = "internal"

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self]


_STATUS_CODES = {
    NoteError.UNAUTHORIZED: 401,
    NoteError.VALIDATION: 400,
    NoteError.FORBIDDEN: 403,
    NoteError.NOT_FOUND: 404,
    NoteError.CONFLICT: 409,
    NoteError.INTERNAL: 500,
}


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Err:
    error: NoteError
    message: str
    details: list[dict[str, Any]] = field(default_factory=list)

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


Result = Union[Ok[T], Err]
