from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class AccessLevel(str, Enum):
    """Role tag stored on the account and copied into issued tokens."""

    guest = "Guest"
    customer = "Customer"
    company = "Company"
    admin = "Admin"
    manager = "Manager"
    developer = "Developer"


@dataclass(slots=True)
class Account:
    """Account row as seen by the login flow.

    Only the security fields (failed attempts, timestamps, last IP and
    ``locked_until``) are written back by this service; ``version`` is the
    optimistic concurrency stamp bumped by every committed write.
    """

    account_id: str
    email: str
    password_hash: str = field(repr=False)
    access_level: AccessLevel = AccessLevel.customer
    is_active: bool = True
    is_banned: bool = False
    is_deleted: bool = False
    failed_login_attempts: int = 0
    last_failed_login_at: datetime | None = None
    last_successful_login_at: datetime | None = None
    last_login_ip_address: str | None = None
    locked_until: datetime | None = None
    version: int = 0

    @property
    def can_authenticate(self) -> bool:
        """Return ``True`` when the active/banned/deleted flags all allow a login."""
        return self.is_active and not self.is_banned and not self.is_deleted
