"""Login outcomes shared by the service and the HTTP layer.

Every call to :meth:`LoginService.login` ends in exactly one of the variants
below; the route layer maps them onto status codes and bodies.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Union

from .account import AccessLevel


class UnauthorizedReason(str, Enum):
    locked = "locked"
    invalid_credentials = "invalid_credentials"
    inactive = "inactive"


@dataclass(frozen=True, slots=True)
class LoginSuccess:
    """Credentials accepted; carries the issued bearer token."""

    token: str
    expires_in: int
    account_id: str
    email: str
    access_level: AccessLevel
    token_type: str = "Bearer"

    @property
    def outcome(self) -> str:
        return "success"


@dataclass(frozen=True, slots=True)
class InvalidRequest:
    """Email or password missing or blank."""

    message: str

    @property
    def outcome(self) -> str:
        return "invalid_request"


@dataclass(frozen=True, slots=True)
class Unauthorized:
    """Authentication refused; ``retry_after`` is only set for locked accounts."""

    reason: UnauthorizedReason
    retry_after: timedelta | None = None

    @property
    def outcome(self) -> str:
        return self.reason.value


@dataclass(frozen=True, slots=True)
class TransientError:
    """Store or infrastructure failure; the caller may try again later."""

    reason: str

    @property
    def outcome(self) -> str:
        return "transient_error"


LoginOutcome = Union[LoginSuccess, InvalidRequest, Unauthorized, TransientError]
