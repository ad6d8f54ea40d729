from __future__ import annotations

import threading
import time
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from storefront_identity.audit import AuditSink
from storefront_identity.domain.account import Account, AccessLevel
from storefront_identity.domain.errors import StateConflictError, StoreUnavailableError
from storefront_identity.domain.lockout import LockoutPolicy
from storefront_identity.domain.service import FailureDelay, LoginService
from storefront_identity.security.passwords import Pbkdf2PasswordVerifier
from storefront_identity.security.tokens import JwtTokenIssuer

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
PASSWORD = "correct horse battery staple"


class FakeAccountRepository:
    """In-memory account store applying the same version check as Postgres.

    ``latency`` adds a round trip outside the lock to every read and write so
    concurrent logins interleave the way they do against a real database.
    """

    def __init__(self) -> None:
        self._accounts: dict[str, Account] = {}
        self._lock = threading.Lock()
        self.audit_log: list[dict[str, Any]] = []
        self.fail_fetch = False
        self.fail_save = False
        self.fail_audit = False
        self.save_calls = 0
        self.conflicts = 0
        self.latency = 0.0

    def add(self, account: Account) -> Account:
        self._accounts[account.email] = account
        return account

    def get(self, email: str) -> Account:
        return self._accounts[email]

    def fetch_by_email(self, email: str) -> Account | None:
        if self.fail_fetch:
            raise StoreUnavailableError("account lookup failed")
        time.sleep(self.latency)
        with self._lock:
            account = self._accounts.get(email)
            return replace(account) if account else None

    def save_security_state(self, account: Account, expected_version: int) -> Account:
        if self.fail_save:
            raise StoreUnavailableError("account write-back failed")
        time.sleep(self.latency)
        with self._lock:
            self.save_calls += 1
            stored = self._accounts.get(account.email)
            if stored is None or stored.version != expected_version:
                self.conflicts += 1
                raise StateConflictError(account.account_id, expected_version)
            committed = replace(account, version=stored.version + 1)
            self._accounts[account.email] = committed
            return replace(committed)

    def record_failure(
        self,
        account_id: str,
        *,
        now: datetime,
        client_ip: str,
        max_failed_attempts: int,
        lockout_duration: timedelta,
    ) -> Account:
        if self.fail_save:
            raise StoreUnavailableError("failed login write-back failed")
        time.sleep(self.latency)
        policy = LockoutPolicy(max_failed_attempts, lockout_duration)
        with self._lock:
            self.save_calls += 1
            stored = next(a for a in self._accounts.values() if a.account_id == account_id)
            committed = replace(policy.on_failure(stored, now, client_ip), version=stored.version + 1)
            self._accounts[stored.email] = committed
            return replace(committed)

    def write_audit_event(
        self,
        *,
        account_id: str | None,
        event_type: str,
        actor: str | None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        if self.fail_audit:
            raise StoreUnavailableError("audit insert failed")
        with self._lock:
            self.audit_log.append(
                {
                    "account_id": account_id,
                    "event_type": event_type,
                    "actor": actor,
                    "metadata": metadata or {},
                }
            )


class CountingVerifier:
    """Wraps the real verifier and records which hashes it was asked about."""

    def __init__(self, inner: Pbkdf2PasswordVerifier, barrier: threading.Barrier | None = None) -> None:
        self._inner = inner
        self._barrier = barrier
        self._lock = threading.Lock()
        self.calls: list[str] = []

    @property
    def dummy_hash(self) -> str:
        return self._inner.dummy_hash

    def verify(self, password: str, stored_hash: str) -> bool:
        with self._lock:
            self.calls.append(stored_hash)
        result = self._inner.verify(password, stored_hash)
        if self._barrier is not None:
            self._barrier.wait()
        return result


class FixedClock:
    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


@pytest.fixture(scope="session")
def password_verifier() -> Pbkdf2PasswordVerifier:
    return Pbkdf2PasswordVerifier(iterations=1_000)


@pytest.fixture(scope="session")
def password_hash(password_verifier: Pbkdf2PasswordVerifier) -> str:
    return password_verifier.hash_password(PASSWORD)


@pytest.fixture
def repository() -> FakeAccountRepository:
    return FakeAccountRepository()


@pytest.fixture
def verifier(password_verifier: Pbkdf2PasswordVerifier) -> CountingVerifier:
    return CountingVerifier(password_verifier)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def delays() -> list[float]:
    return []


@pytest.fixture
def make_service(repository, verifier, clock, delays):
    def factory(**overrides: Any) -> LoginService:
        options: dict[str, Any] = {
            "failure_delay": FailureDelay(min_ms=0, max_ms=0),
            "clock": clock,
            "sleep": delays.append,
        }
        options.update(overrides)
        return LoginService(
            repository,
            options.pop("verifier", verifier),
            JwtTokenIssuer(),
            AuditSink(writer=repository),
            **options,
        )

    return factory


@pytest.fixture
def service(make_service) -> LoginService:
    return make_service()


@pytest.fixture
def account(repository: FakeAccountRepository, password_hash: str) -> Account:
    return repository.add(
        Account(
            account_id="3fa85f64-5717-4562-b3fc-2c963f66afa6",
            email="shopper@example.com",
            password_hash=password_hash,
            access_level=AccessLevel.customer,
        )
    )
