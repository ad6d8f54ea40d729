"""Security audit events for login attempts.

Events only ever carry a SHA-256 digest of the submitted email. Passwords,
stored hashes and the plaintext address never reach the log or the audit
table.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from prometheus_client import Counter

from .domain.errors import StoreUnavailableError

logger = logging.getLogger(__name__)

LOGIN_ATTEMPTS = Counter(
    "identity_login_attempts_total",
    "Login attempts grouped by outcome.",
    ["outcome"],
)


def hash_email(email: str) -> str:
    """Return the lowercase hex SHA-256 digest of ``email`` as submitted."""
    return hashlib.sha256(email.encode("utf-8", errors="surrogatepass")).hexdigest()


@dataclass(frozen=True, slots=True)
class LoginAuditEvent:
    outcome: str
    email_hash: str
    client_ip: str
    account_id: str | None = None
    detail: dict[str, Any] = field(default_factory=dict)
    event_type: str = "auth.login"


class AuditWriter(Protocol):
    def write_audit_event(
        self,
        *,
        account_id: str | None,
        event_type: str,
        actor: str | None,
        metadata: dict[str, Any] | None = None,
    ) -> None: ...


class AuditSink:
    """Emit one structured record per login attempt."""

    def __init__(self, writer: AuditWriter | None = None) -> None:
        self._writer = writer

    def record(self, event: LoginAuditEvent) -> None:
        LOGIN_ATTEMPTS.labels(outcome=event.outcome).inc()
        level = logging.INFO if event.outcome == "success" else logging.WARNING
        logger.log(
            level,
            "login attempt outcome=%s email_hash=%s ip=%s",
            event.outcome,
            event.email_hash,
            event.client_ip,
            extra={
                "event_type": event.event_type,
                "outcome": event.outcome,
                "email_hash": event.email_hash,
                "client_ip": event.client_ip,
                "account_id": event.account_id,
                "detail": event.detail,
            },
        )
        if self._writer is None:
            return
        try:
            self._writer.write_audit_event(
                account_id=event.account_id,
                event_type=f"{event.event_type}.{event.outcome}",
                actor=event.client_ip,
                metadata={"email_hash": event.email_hash, **event.detail},
            )
        except StoreUnavailableError as exc:
            # The login outcome is already decided; the log line above is the record.
            logger.warning("audit event not persisted: %s", exc)
