"""Login service orchestrating lockout checks, credential verification and write-back."""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from threading import Event
from typing import Any, Callable, Protocol

from prometheus_client import Histogram

from .account import Account
from .contracts import (
    InvalidRequest,
    LoginOutcome,
    LoginSuccess,
    TransientError,
    Unauthorized,
    UnauthorizedReason,
)
from .errors import (
    LoginCancelled,
    StateConflictError,
    StoreUnavailableError,
    TokenIssuanceError,
)
from .lockout import LockoutPolicy
from ..audit import AuditSink, LoginAuditEvent, hash_email
from ..security.tokens import IssuedToken

logger = logging.getLogger(__name__)

LOGIN_DURATION = Histogram(
    "identity_login_duration_seconds",
    "Wall time spent answering a login attempt, including failure delays.",
)

MAX_FAILURE_DELAY_MS = 5000


class AccountStore(Protocol):
    def fetch_by_email(self, email: str) -> Account | None: ...

    def save_security_state(self, account: Account, expected_version: int) -> Account: ...

    def record_failure(
        self,
        account_id: str,
        *,
        now: datetime,
        client_ip: str,
        max_failed_attempts: int,
        lockout_duration: timedelta,
    ) -> Account: ...

class CredentialVerifier(Protocol):
    @property
    def dummy_hash(self) -> str: ...

    def verify(self, password: str, stored_hash: str) -> bool: ...


class TokenIssuer(Protocol):
    def issue(self, account: Account) -> IssuedToken: ...


@dataclass(frozen=True, slots=True)
class FailureDelay:
    """Jittered response-time floor for refused logins.

    A refused attempt is answered no sooner than a random point inside the
    window, measured from the start of the call, so the locked, unknown-email
    and wrong-password paths share one latency distribution. Bounds are in
    milliseconds and must satisfy ``0 <= min_ms <= max_ms <= MAX_FAILURE_DELAY_MS``.
    """

    min_ms: int = 100
    max_ms: int = 300

    def __post_init__(self) -> None:
        if not 0 <= self.min_ms <= self.max_ms <= MAX_FAILURE_DELAY_MS:
            raise ValueError(
                f"failure delay must satisfy 0 <= min <= max <= {MAX_FAILURE_DELAY_MS} ms"
            )

    def draw(self, rng: random.Random) -> float:
        """Return one target response time in seconds."""
        return rng.uniform(self.min_ms, self.max_ms) / 1000


@dataclass(slots=True)
class _Attempt:
    outcome: LoginOutcome
    account_id: str | None = None
    detail: dict[str, Any] = field(default_factory=dict)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _usable(value: str | None) -> bool:
    """Non-blank and encodable as UTF-8 (JSON admits lone surrogates)."""
    if not value or not value.strip():
        return False
    try:
        value.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True


class LoginService:
    """Authenticates email/password pairs against the account store.

    Every call ends in exactly one :data:`LoginOutcome` and emits exactly one
    audit event. Unknown emails still pay for a full password verification
    against the verifier's dummy hash, and every refused attempt is padded to a
    jittered response-time floor, so neither the response nor its timing
    reveals whether an email is registered.
    """

    def __init__(
        self,
        repository: AccountStore,
        verifier: CredentialVerifier,
        token_issuer: TokenIssuer,
        audit: AuditSink | None = None,
        *,
        policy: LockoutPolicy | None = None,
        failure_delay: FailureDelay | None = None,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], None] | None = None,
        rng: random.Random | None = None,
        conflict_retries: int = 1,
    ) -> None:
        """Store collaborators; ``policy`` is the injection point for lockout rules."""
        if conflict_retries < 0:
            raise ValueError("conflict_retries cannot be negative")
        self._repository = repository
        self._verifier = verifier
        self._token_issuer = token_issuer
        self._audit = audit or AuditSink()
        self._policy = policy or LockoutPolicy()
        self._failure_delay = failure_delay or FailureDelay()
        self._clock = clock or _utcnow
        self._sleep = sleep or time.sleep
        self._rng = rng or random.SystemRandom()
        self._conflict_retries = conflict_retries

    def login(
        self,
        email: str | None,
        password: str | None,
        client_ip: str,
        cancel: Event | None = None,
    ) -> LoginOutcome:
        """Authenticate ``email``/``password`` and return the outcome.

        ``cancel`` is observed before the account fetch, before every
        write-back, before token issuance and during the failure delay;
        a set event raises :class:`LoginCancelled`. By the time the delay
        starts the outcome is committed and audited, so a cancellation there
        only cuts the wait short.
        """
        started = time.perf_counter()
        email_hash = hash_email(email or "")

        if not _usable(email) or not _usable(password):
            attempt = _Attempt(InvalidRequest("Email and password are required"))
        else:
            try:
                attempt = self._authenticate(email, password, client_ip, cancel)
            except StoreUnavailableError as exc:
                logger.error("login aborted, account store unavailable: %s", exc)
                attempt = _Attempt(TransientError("store_unavailable"))
            except StateConflictError as exc:
                logger.error(
                    "login aborted, write-back for account %s kept conflicting", exc.account_id
                )
                attempt = _Attempt(TransientError("conflict"), account_id=exc.account_id)
            except TokenIssuanceError as exc:
                logger.error("login aborted, access token could not be issued: %s", exc)
                attempt = _Attempt(TransientError("token_unavailable"))

        self._audit.record(
            LoginAuditEvent(
                outcome=attempt.outcome.outcome,
                email_hash=email_hash,
                client_ip=client_ip,
                account_id=attempt.account_id,
                detail=attempt.detail,
            )
        )
        if isinstance(attempt.outcome, Unauthorized):
            self._pause(started, cancel)
        LOGIN_DURATION.observe(time.perf_counter() - started)
        return attempt.outcome

    def _authenticate(
        self, email: str, password: str, client_ip: str, cancel: Event | None
    ) -> _Attempt:
        self._check_cancelled(cancel)
        account = self._repository.fetch_by_email(email)
        now = self._clock()

        if account is not None:
            locked = self._policy.check_locked(account, now)
            if locked is not None:
                logger.warning(
                    "login blocked, account %s locked for %d more minute(s)",
                    account.account_id,
                    locked.retry_after_minutes,
                )
                return _Attempt(
                    Unauthorized(UnauthorizedReason.locked, retry_after=locked.remaining),
                    account_id=account.account_id,
                    detail={"retry_after_minutes": locked.retry_after_minutes},
                )

        stored_hash = account.password_hash if account is not None else self._verifier.dummy_hash
        verified = self._verifier.verify(password, stored_hash)

        if account is None:
            return _Attempt(Unauthorized(UnauthorizedReason.invalid_credentials))

        if not verified:
            self._check_cancelled(cancel)
            committed = self._repository.record_failure(
                account.account_id,
                now=now,
                client_ip=client_ip,
                max_failed_attempts=self._policy.max_failed_attempts,
                lockout_duration=self._policy.lockout_duration,
            )
            if self._policy.is_locked(committed, now) and not self._policy.is_locked(account, now):
                logger.warning(
                    "account %s locked after %d failed attempts",
                    committed.account_id,
                    committed.failed_login_attempts,
                )
            return _Attempt(
                Unauthorized(UnauthorizedReason.invalid_credentials),
                account_id=account.account_id,
                detail={
                    "failed_attempts": committed.failed_login_attempts,
                    "remaining_attempts": self._policy.remaining_attempts(committed),
                },
            )

        if not account.can_authenticate:
            return self._inactive(account)

        committed = self._commit(
            account,
            lambda current: (
                self._policy.on_success(current, now, client_ip)
                if current.can_authenticate
                else None
            ),
            cancel,
        )
        if committed is None:
            return self._inactive(account)

        self._check_cancelled(cancel)
        issued = self._token_issuer.issue(committed)
        logger.info("login succeeded for account %s", committed.account_id)
        return _Attempt(
            LoginSuccess(
                token=issued.token,
                expires_in=issued.expires_in,
                account_id=committed.account_id,
                email=committed.email,
                access_level=committed.access_level,
            ),
            account_id=committed.account_id,
        )

    def _inactive(self, account: Account) -> _Attempt:
        logger.warning(
            "login refused, account %s not active (active=%s banned=%s deleted=%s)",
            account.account_id,
            account.is_active,
            account.is_banned,
            account.is_deleted,
        )
        return _Attempt(Unauthorized(UnauthorizedReason.inactive), account_id=account.account_id)

    def _commit(
        self,
        account: Account,
        transition: Callable[[Account], Account | None],
        cancel: Event | None,
    ) -> Account | None:
        """Apply ``transition`` and write it back with a version check.

        On a conflict the row is re-read and the transition re-applied, at most
        ``conflict_retries`` times. ``None`` from the transition aborts the
        write and is returned unchanged.
        """
        current = account
        retries_left = self._conflict_retries
        while True:
            self._check_cancelled(cancel)
            updated = transition(current)
            if updated is None:
                return None
            try:
                return self._repository.save_security_state(updated, expected_version=current.version)
            except StateConflictError:
                if retries_left == 0:
                    raise
                retries_left -= 1
                logger.info("write conflict on account %s, re-reading", current.account_id)
                self._check_cancelled(cancel)
                fresh = self._repository.fetch_by_email(current.email)
                if fresh is None:
                    raise
                current = fresh

    def _pause(self, started: float, cancel: Event | None) -> None:
        target = self._failure_delay.draw(self._rng)
        seconds = max(0.0, target - (time.perf_counter() - started))
        if cancel is None:
            self._sleep(seconds)
        elif cancel.wait(seconds):
            raise LoginCancelled("login cancelled during failure delay")

    @staticmethod
    def _check_cancelled(cancel: Event | None) -> None:
        if cancel is not None and cancel.is_set():
            raise LoginCancelled("login cancelled")
