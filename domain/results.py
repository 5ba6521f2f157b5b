"""Result values returned by guards and engine operations.

Expected business failures (bad token, wrong day, wrong status, ...) are not
raised. Every guard returns ``Ok(value)`` or ``Err(GuardFailure)`` and the
engine composes them, so each rejection path has a distinct, testable reason.
Infrastructure failures (store outage, provider outage, missing secrets) are
still exceptions; see ``domain.store`` and ``domain.errors``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar, Union

T = TypeVar("T")


class FailureKind(str, Enum):
    INVALID_INPUT = "invalid_input"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    TOKEN_EXPIRED = "token_expired"
    TOKEN_INVALID = "token_invalid"
    INVALID_OR_USED_TOKEN = "invalid_or_used_token"
    WRONG_DAY = "wrong_day"
    PASS_NOT_SCHEDULED = "pass_not_scheduled"
    INVALID_TRANSITION = "invalid_transition"
    TRANSIENT = "transient"


@dataclass(frozen=True)
class GuardFailure:
    kind: FailureKind
    message: str

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    failure: GuardFailure

    @property
    def ok(self) -> bool:
        return False

    @property
    def kind(self) -> FailureKind:
        return self.failure.kind

    @property
    def message(self) -> str:
        return self.failure.message


Result = Union[Ok[T], Err]


def fail(kind: FailureKind, message: str) -> Err:
    return Err(GuardFailure(kind, message))
