"""In-memory account directory keyed by normalized identity."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from itertools import count
from threading import Lock

from .domain.account import Account, AccountStatus, Role
from .domain.contracts import CreateAccountInput
from .domain.errors import DuplicateIdentityError, InvalidIdentityError, UnknownAccountError

logger = logging.getLogger(__name__)

# directory-created ids start here; seeded accounts live below it
FIRST_GENERATED_ID = 2000

SAMPLE_ACCOUNTS: tuple[tuple[str, str, str, Role], ...] = (
    ("U1001", "resident.valid@mars.local", "Passw0rd!", Role.COLONY_RESIDENT),
    ("U1002", "resident.expired@mars.local", "AnyPass", Role.MISSION_CONTROL_OPERATOR),
    ("U1003", "resident.locked@mars.local", "Pass123", Role.INFRASTRUCTURE_TECHNICIAN),
)


def normalize(raw_identity: str | None) -> str:
    """Return the lookup key for a raw identity: trimmed and lower-cased."""
    if raw_identity is None:
        return ""
    return raw_identity.strip().lower()


class AccountDirectory:
    """Owns the identity-key to ``Account`` mapping for the process."""

    def __init__(self) -> None:
        """Initialise empty storage and the sequential id generator."""
        self._accounts: dict[str, Account] = {}
        self._by_id: dict[str, Account] = {}
        self._ids = count(FIRST_GENERATED_ID)
        self._lock = Lock()

    @property
    def accounts(self) -> dict[str, Account]:
        """The live mapping, shared by reference with the auth service."""
        return self._accounts

    @staticmethod
    def normalize(raw_identity: str | None) -> str:
        return normalize(raw_identity)

    def exists(self, raw_identity: str | None) -> bool:
        """Return ``True`` when an account is registered for the identity."""
        return normalize(raw_identity) in self._accounts

    def find(self, raw_identity: str | None) -> Account | None:
        """Look up an account by raw identity or return ``None``."""
        return self._accounts.get(normalize(raw_identity))

    def find_by_id(self, account_id: str) -> Account | None:
        """Look up an account by its opaque identifier or return ``None``."""
        return self._by_id.get(account_id)

    def create(
        self,
        raw_identity: str,
        credential: str,
        status: AccountStatus = AccountStatus.ACTIVE,
        role: Role = Role.COLONY_RESIDENT,
    ) -> Account:
        """Register a new account and assign it the next generated identifier.

        Raises
        ------
        InvalidIdentityError
            When the identity is blank after normalization.
        DuplicateIdentityError
            When an account already exists for the normalized identity.
        """
        key = normalize(raw_identity)
        if not key:
            raise InvalidIdentityError()
        with self._lock:
            if key in self._accounts:
                raise DuplicateIdentityError(key)
            account = Account(
                account_id=f"U{next(self._ids)}",
                identity_key=key,
                display_identity=raw_identity,
                credential=credential,
                status=status,
                role=role,
                created_at=datetime.now(timezone.utc),
            )
            self._store(account)
        logger.info("account %s created for %s (%s)", account.account_id, key, role.value)
        return account

    def create_account(self, payload: CreateAccountInput) -> Account:
        """Create an account from a validated request contract."""
        return self.create(payload.identity, payload.credential, payload.status, payload.role)

    def seed_samples(self) -> list[Account]:
        """Install the bootstrap colony accounts, leaving existing keys untouched."""
        seeded: list[Account] = []
        now = datetime.now(timezone.utc)
        with self._lock:
            for account_id, identity, credential, role in SAMPLE_ACCOUNTS:
                key = normalize(identity)
                if key in self._accounts:
                    continue
                account = Account(
                    account_id=account_id,
                    identity_key=key,
                    display_identity=identity,
                    credential=credential,
                    status=AccountStatus.ACTIVE,
                    role=role,
                    created_at=now,
                )
                self._store(account)
                seeded.append(account)
        if seeded:
            logger.info("seeded %d sample accounts", len(seeded))
        return seeded

    def set_status(self, raw_identity: str, status: AccountStatus) -> Account:
        """Apply an administrative status change.

        Returning an account to ACTIVE also clears its failed-attempt counter.
        """
        status = AccountStatus(status)
        account = self._require(raw_identity)
        with account.lock:
            previous = account.status
            account.status = status
            if status is AccountStatus.ACTIVE:
                account.failed_attempts = 0
        logger.info(
            "account %s status changed %s -> %s", account.identity_key, previous.value, status.value
        )
        return account

    def change_credential(self, raw_identity: str, credential: str) -> Account:
        """Replace the stored credential out of band."""
        account = self._require(raw_identity)
        with account.lock:
            account.credential = credential
        logger.info("credential changed for %s", account.identity_key)
        return account

    def __len__(self) -> int:
        return len(self._accounts)

    def _require(self, raw_identity: str) -> Account:
        account = self.find(raw_identity)
        if account is None:
            raise UnknownAccountError(normalize(raw_identity))
        return account

    def _store(self, account: Account) -> None:
        self._accounts[account.identity_key] = account
        self._by_id[account.account_id] = account
