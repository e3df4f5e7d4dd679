from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from threading import Lock


class AccountStatus(str, Enum):
    """Lifecycle states an account can be in."""

    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    LOCKED = "LOCKED"


class Role(str, Enum):
    """Colony roles granted to an account."""

    COLONY_RESIDENT = "COLONY_RESIDENT"
    MISSION_CONTROL_OPERATOR = "MISSION_CONTROL_OPERATOR"
    INFRASTRUCTURE_TECHNICIAN = "INFRASTRUCTURE_TECHNICIAN"

    @property
    def label(self) -> str:
        """Human-readable role name for display surfaces."""
        return _ROLE_LABELS[self]


_ROLE_LABELS = {
    Role.COLONY_RESIDENT: "Colony Resident",
    Role.MISSION_CONTROL_OPERATOR: "Mission Control Operator",
    Role.INFRASTRUCTURE_TECHNICIAN: "Infrastructure Technician",
}


@dataclass(slots=True, eq=False)
class Account:
    """Aggregate root for a colony member able to authenticate."""

    account_id: str
    identity_key: str
    display_identity: str
    credential: str = field(repr=False)
    status: AccountStatus
    role: Role
    created_at: datetime
    failed_attempts: int = 0
    session_active: bool = False
    last_activity_at: datetime | None = None
    # identifies the open session; cleared when it closes
    session_id: str | None = None
    # guards status, failed_attempts and the session fields
    lock: Lock = field(default_factory=Lock, repr=False)
