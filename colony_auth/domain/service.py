"""Authentication service: login state machine, session liveness, and auditing."""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from threading import Lock

from .account import Account, AccountStatus
from .audit import AuditTrail
from .contracts import AuthFailure, FailureReason
from .errors import ConfigurationError
from ..directory import normalize
from ..metrics import ACCOUNT_LOCKOUTS, LOGIN_OUTCOMES, SESSIONS_CLOSED

logger = logging.getLogger(__name__)

CredentialMatcher = Callable[[str, str], bool]
Clock = Callable[[], datetime]


def constant_time_match(stored: str, supplied: str) -> bool:
    """Compare two credentials without leaking timing on the first mismatch."""
    return secrets.compare_digest(stored.encode("utf-8"), supplied.encode("utf-8"))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class _LoginAttempt:
    """Working state threaded through the login guards."""

    key: str
    credential: str
    account: Account | None = None


class AuthService:
    """Verifies credentials, locks out brute-force attempts, and tracks sessions.

    The service shares the directory's mapping by reference so accounts
    created after construction are visible to ``login`` immediately.
    """

    def __init__(
        self,
        accounts: Mapping[str, Account] | None,
        max_attempts: int,
        session_timeout: timedelta | None,
        *,
        clock: Clock = utcnow,
        credential_matcher: CredentialMatcher = constant_time_match,
    ) -> None:
        """Validate the policy values and store the shared account mapping.

        Raises
        ------
        ConfigurationError
            If ``accounts`` is missing, ``max_attempts`` is not a positive
            integer, or ``session_timeout`` is missing or not positive.
        """
        if accounts is None:
            raise ConfigurationError("accounts mapping is required")
        if isinstance(max_attempts, bool) or not isinstance(max_attempts, int) or max_attempts <= 0:
            raise ConfigurationError("max_attempts must be a positive integer")
        if session_timeout is None or session_timeout <= timedelta(0):
            raise ConfigurationError("session_timeout must be positive")

        self._accounts = accounts
        self._max_attempts = max_attempts
        self._session_timeout = session_timeout
        self._clock = clock
        self._matches = credential_matcher
        self._audit = AuditTrail()
        self._last_error: str | None = None
        self._state_lock = Lock()

        # evaluated in order; the first guard returning a failure wins
        self._lookup_guards: tuple[Callable[[_LoginAttempt], AuthFailure | None], ...] = (
            self._require_identity,
            self._require_known_identity,
        )
        self._account_guards: tuple[Callable[[_LoginAttempt], AuthFailure | None], ...] = (
            self._reject_expired,
            self._reject_locked,
            self._verify_credential,
        )

    @property
    def session_timeout(self) -> timedelta:
        return self._session_timeout

    @property
    def audit_trail(self) -> AuditTrail:
        return self._audit

    def login(self, identity: str | None, credential: str | None) -> Account | AuthFailure:
        """Authenticate ``identity`` and open a session on success.

        Returns the authenticated ``Account`` or an ``AuthFailure`` describing
        the first check that rejected the attempt. Every outcome is audited.
        """
        self._set_last_error(None)
        attempt = _LoginAttempt(key=normalize(identity), credential=credential or "")

        for guard in self._lookup_guards:
            failure = guard(attempt)
            if failure is not None:
                return failure

        account = attempt.account
        with account.lock:
            for guard in self._account_guards:
                failure = guard(attempt)
                if failure is not None:
                    return failure

            account.failed_attempts = 0
            account.session_active = True
            account.session_id = secrets.token_urlsafe(16)
            account.last_activity_at = self._clock()
            self._audit.append(f"SUCCESS:{account.identity_key}")

        LOGIN_OUTCOMES.labels(outcome="success").inc()
        logger.info("login succeeded for %s", account.identity_key)
        return account

    def touch(self, account: Account | None) -> None:
        """Record activity on ``account`` to keep its session alive."""
        if account is None:
            return
        with account.lock:
            account.last_activity_at = self._clock()

    def is_session_expired(self, account: Account | None, now: datetime | None = None) -> bool:
        """Return ``True`` unless ``account`` holds a session still inside the timeout.

        A session idle for exactly ``session_timeout`` is still live. ``now``
        defaults to the service clock and must be timezone-aware when given.
        """
        if account is None:
            return True
        now = self._resolve_now(now)
        with account.lock:
            return self._expired(account, now)

    def require_session(self, account: Account | None, now: datetime | None = None) -> bool:
        """Return whether the session is live, closing it if it has timed out."""
        if account is None:
            return False
        now = self._resolve_now(now)
        with account.lock:
            if not self._expired(account, now):
                return True
            if not account.session_active:
                return False
            account.session_active = False
            account.session_id = None
        SESSIONS_CLOSED.labels(cause="timeout").inc()
        logger.info("session for %s expired after inactivity", account.identity_key)
        return False

    def logout(self, account: Account | None) -> None:
        """Close the session on ``account``; the last activity timestamp is kept."""
        if account is None:
            return
        with account.lock:
            was_active = account.session_active
            account.session_active = False
            account.session_id = None
        if was_active:
            SESSIONS_CLOSED.labels(cause="logout").inc()
            logger.info("logout for %s", account.identity_key)

    def get_audit(self) -> tuple[str, ...]:
        """Return the audit trail in insertion order."""
        return self._audit.snapshot()

    def get_last_error(self) -> str | None:
        """Return the failure message of the most recent ``login`` call, if any."""
        with self._state_lock:
            return self._last_error

    def _resolve_now(self, now: datetime | None) -> datetime:
        if now is None:
            return self._clock()
        if now.tzinfo is None or now.utcoffset() is None:
            raise ValueError("now must be a timezone-aware datetime")
        return now

    def _expired(self, account: Account, now: datetime) -> bool:
        if not account.session_active or account.last_activity_at is None:
            return True
        return now - account.last_activity_at > self._session_timeout

    def _require_identity(self, attempt: _LoginAttempt) -> AuthFailure | None:
        if attempt.key:
            return None
        return self._fail(
            AuthFailure(FailureReason.EMPTY_IDENTITY, "empty identity"),
            "FAIL empty-identity",
        )

    def _require_known_identity(self, attempt: _LoginAttempt) -> AuthFailure | None:
        attempt.account = self._accounts.get(attempt.key)
        if attempt.account is not None:
            return None
        return self._fail(
            AuthFailure(FailureReason.UNKNOWN_IDENTITY, f"unknown identity: {attempt.key}"),
            f"FAIL unknown-identity:{attempt.key}",
        )

    def _reject_expired(self, attempt: _LoginAttempt) -> AuthFailure | None:
        account = attempt.account
        if account.status is not AccountStatus.EXPIRED:
            return None
        return self._fail(
            AuthFailure(FailureReason.ACCOUNT_EXPIRED, f"account expired: {account.identity_key}"),
            f"FAIL expired:{account.identity_key}",
        )

    def _reject_locked(self, attempt: _LoginAttempt) -> AuthFailure | None:
        account = attempt.account
        if account.status is not AccountStatus.LOCKED:
            return None
        return self._fail(
            AuthFailure(FailureReason.ACCOUNT_LOCKED, f"account locked: {account.identity_key}"),
            f"FAIL locked:{account.identity_key}",
        )

    def _verify_credential(self, attempt: _LoginAttempt) -> AuthFailure | None:
        account = attempt.account
        if self._matches(account.credential, attempt.credential):
            return None

        account.failed_attempts += 1
        identity = account.identity_key
        count = account.failed_attempts
        lines = [f"FAIL bad-credential:{identity}:attempt={count}"]
        message = f"invalid credential (attempt {count}): {identity}"
        locked = False
        if count >= self._max_attempts:
            account.status = AccountStatus.LOCKED
            lines.append(f"LOCKED:{identity}")
            message = f"account locked after max attempts: {identity}"
            locked = True
            ACCOUNT_LOCKOUTS.inc()
            logger.warning("account %s locked after %d failed attempts", identity, count)

        return self._fail(
            AuthFailure(FailureReason.INVALID_CREDENTIAL, message, attempt=count, locked=locked),
            *lines,
        )

    def _fail(self, failure: AuthFailure, *audit_lines: str) -> AuthFailure:
        self._set_last_error(failure.message)
        self._audit.append(*audit_lines)
        LOGIN_OUTCOMES.labels(outcome=failure.reason.value).inc()
        logger.info("login rejected: %s", failure.message)
        return failure

    def _set_last_error(self, message: str | None) -> None:
        with self._state_lock:
            self._last_error = message
