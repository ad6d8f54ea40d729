"""Brute-force lockout rules applied to an account snapshot."""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from .account import Account

DEFAULT_MAX_FAILED_ATTEMPTS = 5
DEFAULT_LOCKOUT_DURATION = timedelta(minutes=15)


@dataclass(frozen=True, slots=True)
class LockedOut:
    """Returned by :meth:`LockoutPolicy.check_locked` while a lock is active."""

    locked_until: datetime
    remaining: timedelta

    @property
    def retry_after_minutes(self) -> int:
        """Remaining lock time rounded up to whole minutes (never below 1)."""
        return max(1, math.ceil(self.remaining.total_seconds() / 60))


class LockoutPolicy:
    """Pure state transitions over the security fields of an :class:`Account`.

    The lock is level-triggered: once ``failed_login_attempts`` reaches
    ``max_failed_attempts`` the account is locked for ``lockout_duration``.
    Failures recorded while a lock is active never move ``locked_until``.
    The counter is only reset by a successful login, so after a lock expires
    the next failure locks the account again. The account store applies the
    same failure rule as one atomic update; :meth:`on_failure` is its
    in-memory form.
    """

    def __init__(
        self,
        max_failed_attempts: int = DEFAULT_MAX_FAILED_ATTEMPTS,
        lockout_duration: timedelta = DEFAULT_LOCKOUT_DURATION,
    ) -> None:
        if max_failed_attempts < 1:
            raise ValueError("max_failed_attempts must be at least 1")
        if lockout_duration <= timedelta(0):
            raise ValueError("lockout_duration must be positive")
        self._max_failed_attempts = max_failed_attempts
        self._lockout_duration = lockout_duration

    @property
    def max_failed_attempts(self) -> int:
        return self._max_failed_attempts

    @property
    def lockout_duration(self) -> timedelta:
        return self._lockout_duration

    def is_locked(self, account: Account, now: datetime) -> bool:
        return account.locked_until is not None and account.locked_until > now

    def check_locked(self, account: Account, now: datetime) -> LockedOut | None:
        """Return a :class:`LockedOut` when the account may not attempt a login."""
        locked_until = account.locked_until
        if locked_until is None or locked_until <= now:
            return None
        return LockedOut(locked_until=locked_until, remaining=locked_until - now)

    def remaining_attempts(self, account: Account) -> int:
        return max(0, self._max_failed_attempts - account.failed_login_attempts)

    def on_failure(self, account: Account, now: datetime, client_ip: str) -> Account:
        """Return the account state after one more failed credential check."""
        attempts = account.failed_login_attempts + 1
        locked_until = account.locked_until
        if attempts >= self._max_failed_attempts and not self.is_locked(account, now):
            locked_until = now + self._lockout_duration
        return replace(
            account,
            failed_login_attempts=attempts,
            last_failed_login_at=now,
            last_login_ip_address=client_ip,
            locked_until=locked_until,
        )

    def on_success(self, account: Account, now: datetime, client_ip: str) -> Account:
        """Return the account state after a successful login."""
        return replace(
            account,
            failed_login_attempts=0,
            locked_until=None,
            last_successful_login_at=now,
            last_login_ip_address=client_ip,
        )
