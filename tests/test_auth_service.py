from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from threading import Barrier

import pytest

from colony_auth.directory import AccountDirectory
from colony_auth.domain.account import Account, AccountStatus
from colony_auth.domain.contracts import AuthFailure, FailureReason
from colony_auth.domain.errors import ConfigurationError
from colony_auth.domain.service import AuthService

T0 = datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock returning timezone-aware instants."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def directory() -> AccountDirectory:
    directory = AccountDirectory()
    directory.create("u@x", "secret")
    return directory


@pytest.fixture
def service(directory: AccountDirectory, clock: FakeClock) -> AuthService:
    return AuthService(directory.accounts, 5, timedelta(minutes=15), clock=clock)


@pytest.mark.parametrize(
    "accounts, max_attempts, timeout",
    [
        (None, 5, timedelta(minutes=15)),
        ({}, 0, timedelta(minutes=15)),
        ({}, -1, timedelta(minutes=15)),
        ({}, 5, None),
        ({}, 5, timedelta(0)),
        ({}, 5, timedelta(seconds=-1)),
    ],
)
def test_constructor_rejects_invalid_configuration(accounts, max_attempts, timeout):
    with pytest.raises(ConfigurationError):
        AuthService(accounts, max_attempts, timeout)


def test_configuration_error_is_a_value_error():
    with pytest.raises(ValueError):
        AuthService({}, 0, timedelta(minutes=1))


def test_successful_login_opens_session(service, directory, clock):
    result = service.login("u@x", "secret")

    assert isinstance(result, Account)
    assert result is directory.find("u@x")
    assert result.session_active is True
    assert result.failed_attempts == 0
    assert result.last_activity_at == clock.now
    assert service.get_audit() == ("SUCCESS:u@x",)
    assert service.get_last_error() is None


def test_login_normalizes_identity(service):
    result = service.login("  U@X ", "secret")

    assert isinstance(result, Account)
    assert service.get_audit()[-1] == "SUCCESS:u@x"


@pytest.mark.parametrize("identity", ["", "   ", None])
def test_blank_identity_is_rejected(service, identity):
    result = service.login(identity, "secret")

    assert isinstance(result, AuthFailure)
    assert result.reason is FailureReason.EMPTY_IDENTITY
    assert result.message == "empty identity"
    assert service.get_audit() == ("FAIL empty-identity",)
    assert service.get_last_error() == "empty identity"


def test_unknown_identity_leaves_accounts_untouched(service, directory):
    account = directory.find("u@x")

    result = service.login("ghost@x", "secret")

    assert result.reason is FailureReason.UNKNOWN_IDENTITY
    assert result.message == "unknown identity: ghost@x"
    assert service.get_audit() == ("FAIL unknown-identity:ghost@x",)
    assert account.failed_attempts == 0
    assert account.status is AccountStatus.ACTIVE
    assert account.session_active is False


def test_expired_account_is_rejected_before_credential_check(service, directory):
    directory.set_status("u@x", AccountStatus.EXPIRED)

    result = service.login("u@x", "wrong")

    assert result.reason is FailureReason.ACCOUNT_EXPIRED
    assert result.message == "account expired: u@x"
    assert service.get_audit() == ("FAIL expired:u@x",)
    assert directory.find("u@x").failed_attempts == 0


def test_locked_account_is_rejected_even_with_correct_credential(service, directory):
    directory.set_status("u@x", AccountStatus.LOCKED)

    result = service.login("u@x", "secret")

    assert result.reason is FailureReason.ACCOUNT_LOCKED
    assert result.message == "account locked: u@x"
    assert service.get_audit() == ("FAIL locked:u@x",)


def test_bad_credential_counts_attempts(service, directory):
    first = service.login("u@x", "wrong")
    second = service.login("u@x", "wrong")

    assert first.reason is FailureReason.INVALID_CREDENTIAL
    assert first.attempt == 1
    assert second.message == "invalid credential (attempt 2): u@x"
    assert not second.locked
    assert service.get_audit() == (
        "FAIL bad-credential:u@x:attempt=1",
        "FAIL bad-credential:u@x:attempt=2",
    )
    assert directory.find("u@x").failed_attempts == 2


def test_missing_credential_is_treated_as_empty(service, directory):
    result = service.login("u@x", None)

    assert result.reason is FailureReason.INVALID_CREDENTIAL
    assert directory.find("u@x").failed_attempts == 1


def test_empty_credential_matches_empty_stored_credential(directory, clock):
    directory.create("blank@x", "")
    service = AuthService(directory.accounts, 5, timedelta(minutes=15), clock=clock)

    assert isinstance(service.login("blank@x", None), Account)


def test_lockout_after_max_attempts(service, directory):
    """Four misses leave the account active; the fifth locks it."""
    account = directory.find("u@x")
    for _ in range(4):
        service.login("u@x", "wrong")
    assert account.status is AccountStatus.ACTIVE
    assert account.failed_attempts == 4

    fifth = service.login("u@x", "wrong")

    assert account.status is AccountStatus.LOCKED
    assert fifth.reason is FailureReason.INVALID_CREDENTIAL
    assert fifth.locked is True
    assert fifth.attempt == 5
    assert fifth.message == "account locked after max attempts: u@x"
    assert service.get_last_error() == fifth.message
    assert service.get_audit()[-2:] == ("FAIL bad-credential:u@x:attempt=5", "LOCKED:u@x")

    retry = service.login("u@x", "secret")

    assert retry.reason is FailureReason.ACCOUNT_LOCKED
    assert account.session_active is False
    assert account.failed_attempts == 5


def test_correct_fifth_attempt_succeeds_and_resets(service, directory):
    account = directory.find("u@x")
    for _ in range(4):
        service.login("u@x", "wrong")

    result = service.login("u@x", "secret")

    assert result is account
    assert account.failed_attempts == 0
    assert account.session_active is True
    assert account.status is AccountStatus.ACTIVE
    assert service.get_audit()[-1] == "SUCCESS:u@x"


def test_last_error_is_cleared_by_next_login(service):
    service.login("u@x", "wrong")
    assert service.get_last_error() == "invalid credential (attempt 1): u@x"

    service.login("u@x", "secret")

    assert service.get_last_error() is None


def test_every_failure_is_returned_and_audited(service):
    outcomes = [
        service.login("", "x"),
        service.login("nobody", "x"),
        service.login("u@x", "x"),
    ]

    audit = service.get_audit()
    assert len(audit) == len(outcomes)
    for outcome, line in zip(outcomes, audit):
        assert isinstance(outcome, AuthFailure)
        assert line.startswith(f"FAIL {outcome.reason.value}")


def test_session_expiry_boundary(service, clock):
    account = service.login("u@x", "secret")
    timeout = service.session_timeout

    assert service.is_session_expired(account, T0 + timeout - timedelta(seconds=1)) is False
    assert service.is_session_expired(account, T0 + timeout) is False
    assert service.is_session_expired(account, T0 + timeout + timedelta(microseconds=1)) is True


def test_session_expiry_scenario(service):
    account = service.login("u@x", "secret")

    assert service.is_session_expired(account, T0 + timedelta(minutes=14)) is False
    assert service.is_session_expired(account, T0 + timedelta(minutes=16)) is True


def test_session_expiry_defaults_to_clock(service, clock):
    account = service.login("u@x", "secret")
    clock.advance(minutes=16)

    assert service.is_session_expired(account) is True


def test_touch_extends_session(service, clock):
    account = service.login("u@x", "secret")
    clock.advance(minutes=10)
    service.touch(account)

    assert account.last_activity_at == T0 + timedelta(minutes=10)
    assert service.is_session_expired(account, T0 + timedelta(minutes=24)) is False


def test_touch_does_not_open_a_session(service, directory):
    account = directory.find("u@x")
    service.touch(account)

    assert account.last_activity_at == T0
    assert service.is_session_expired(account, T0) is True


def test_absent_account_is_always_expired(service):
    service.touch(None)
    service.logout(None)

    assert service.is_session_expired(None, T0) is True
    assert service.require_session(None) is False


def test_logout_expires_session_regardless_of_timestamp(service):
    account = service.login("u@x", "secret")
    service.logout(account)

    assert account.session_active is False
    assert account.last_activity_at == T0
    assert service.is_session_expired(account, T0) is True
    assert service.is_session_expired(account, T0 - timedelta(days=1)) is True


def test_require_session_closes_timed_out_session(service, clock):
    account = service.login("u@x", "secret")
    assert service.require_session(account) is True

    clock.advance(minutes=15, seconds=1)

    assert service.require_session(account) is False
    assert account.session_active is False


def test_audit_snapshot_is_immutable(service):
    service.login("u@x", "wrong")
    audit = service.get_audit()

    with pytest.raises(AttributeError):
        audit.append("tampered")  # type: ignore[attr-defined]
    service.login("u@x", "secret")
    assert audit == ("FAIL bad-credential:u@x:attempt=1",)
    assert len(service.get_audit()) == 2


def test_service_sees_accounts_created_after_construction(service, directory):
    directory.create("late@x", "pw")

    assert isinstance(service.login("late@x", "pw"), Account)


def test_custom_credential_matcher(directory, clock):
    service = AuthService(
        directory.accounts,
        5,
        timedelta(minutes=15),
        clock=clock,
        credential_matcher=lambda stored, supplied: stored.upper() == supplied.upper(),
    )

    assert isinstance(service.login("u@x", "SECRET"), Account)


def test_concurrent_bad_credentials_do_not_lose_updates(service, directory):
    account = directory.find("u@x")
    account.failed_attempts = 1
    barrier = Barrier(2)

    def attempt() -> AuthFailure:
        barrier.wait()
        return service.login("u@x", "wrong")

    with ThreadPoolExecutor(max_workers=2) as pool:
        results = list(pool.map(lambda _: attempt(), range(2)))

    assert sorted(result.attempt for result in results) == [2, 3]
    assert account.failed_attempts == 3


def test_concurrent_attempts_lock_exactly_once(directory, clock):
    service = AuthService(directory.accounts, 5, timedelta(minutes=15), clock=clock)
    account = directory.find("u@x")

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda _: service.login("u@x", "wrong"), range(20)))

    assert account.status is AccountStatus.LOCKED
    assert account.failed_attempts == 5
    assert sum(1 for result in results if result.locked) == 1
    assert sum(1 for result in results if result.reason is FailureReason.ACCOUNT_LOCKED) == 15
    assert service.get_audit().count("LOCKED:u@x") == 1
    lock_index = service.get_audit().index("LOCKED:u@x")
    assert service.get_audit()[lock_index - 1] == "FAIL bad-credential:u@x:attempt=5"


def test_each_login_opens_a_new_session_id(service):
    account = service.login("u@x", "secret")
    first = account.session_id

    service.login("u@x", "secret")

    assert first
    assert account.session_id and account.session_id != first


def test_logout_clears_session_id(service):
    account = service.login("u@x", "secret")
    service.logout(account)

    assert account.session_id is None


def test_timed_out_session_clears_session_id(service, clock):
    account = service.login("u@x", "secret")
    clock.advance(minutes=20)

    service.require_session(account)

    assert account.session_id is None


def test_failed_login_keeps_open_session(service):
    account = service.login("u@x", "secret")
    sid = account.session_id

    service.login("u@x", "wrong")

    assert account.session_id == sid
    assert account.session_active is True


@pytest.mark.parametrize("check", ["is_session_expired", "require_session"])
def test_naive_now_is_rejected(service, check):
    account = service.login("u@x", "secret")

    with pytest.raises(ValueError, match="timezone-aware"):
        getattr(service, check)(account, datetime(2026, 3, 1, 8, 5))


def test_aware_now_in_other_zone_is_compared_as_instant(service):
    account = service.login("u@x", "secret")
    plus_two = timezone(timedelta(hours=2))

    assert service.is_session_expired(account, datetime(2026, 3, 1, 10, 14, tzinfo=plus_two)) is False
    assert service.is_session_expired(account, datetime(2026, 3, 1, 10, 16, tzinfo=plus_two)) is True
