"""Exceptions raised by the account store and the login flow."""

from __future__ import annotations


class StoreUnavailableError(RuntimeError):
    """The account store could not be reached or rejected the statement."""


class StateConflictError(RuntimeError):
    """An optimistic write lost against a concurrent update of the same row."""

    def __init__(self, account_id: str, expected_version: int) -> None:
        super().__init__(f"account {account_id} changed since version {expected_version}")
        self.account_id = account_id
        self.expected_version = expected_version


class LoginCancelled(RuntimeError):
    """The caller cancelled the login before it reached a terminal outcome."""


class TokenIssuanceError(RuntimeError):
    """An access token could not be signed for an authenticated account."""
