from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar, Union

T = TypeVar("T")
E = TypeVar("E")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Err(Generic[E]):
    error: E


Result = Union[Ok[T], Err[E]]


class AuthErrorCode(str, Enum):
    VALIDATION_ERROR = "validation_error"
    INVALID_CREDENTIALS = "invalid_credentials"
    INVALID_REFRESH_TOKEN = "invalid_refresh_token"
    REFRESH_TOKEN_REUSED = "refresh_token_reused"
    ACCOUNT_EXISTS = "account_exists"
    DIRECTORY_NOT_FOUND = "directory_not_found"
    DIRECTORY_UNAVAILABLE = "directory_unavailable"


@dataclass(frozen=True)
class AuthError:
    """Stable code + human readable message surfaced to callers."""

    code: AuthErrorCode
    message: str

    def as_dict(self) -> dict:
        return {"code": self.code.value, "message": self.message}


def fail(code: AuthErrorCode, message: str) -> Err[AuthError]:
    return Err(AuthError(code=code, message=message))
