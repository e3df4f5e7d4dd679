"""Domain-level request and result contracts shared by multiple layers."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .account import AccountStatus, Role


@dataclass(slots=True)
class CreateAccountInput:
    """Validated inputs required to register an account in the directory."""

    identity: str
    credential: str
    status: AccountStatus = AccountStatus.ACTIVE
    role: Role = Role.COLONY_RESIDENT


class FailureReason(str, Enum):
    """Category of a rejected login attempt, in evaluation order."""

    EMPTY_IDENTITY = "empty-identity"
    UNKNOWN_IDENTITY = "unknown-identity"
    ACCOUNT_EXPIRED = "expired"
    ACCOUNT_LOCKED = "locked"
    INVALID_CREDENTIAL = "bad-credential"


@dataclass(slots=True, frozen=True)
class AuthFailure:
    """Structured outcome of a login attempt that did not authenticate.

    ``locked`` is set when this very attempt pushed the account over the
    attempt threshold; ``attempt`` carries the failed-attempt count for
    credential mismatches.
    """

    reason: FailureReason
    message: str
    attempt: int | None = None
    locked: bool = False

    def __bool__(self) -> bool:
        return False
