"""Utilities for issuing and validating storefront access tokens."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from typing import Any

import jwt

from ..config import get_settings
from ..domain.account import Account, AccessLevel
from ..domain.errors import TokenIssuanceError


def issue_access_token(*, subject: str, email: str, access_level: AccessLevel) -> tuple[str, int]:
    """Create a signed JWT representing an authenticated account.

    Parameters
    ----------
    subject:
        Account identifier to embed in the token `sub` claim.
    email:
        Address the account logged in with, exposed as the `email` claim.
    access_level:
        Role tag copied verbatim into the `role` and `access_level` claims.

    Returns
    -------
    tuple[str, int]
        A tuple containing the encoded JWT string and its TTL (in seconds).
    """

    settings = get_settings()
    now = int(time.time())
    expires_in = settings.jwt_ttl_seconds
    payload: dict[str, Any] = {
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "sub": subject,
        "email": email,
        "role": access_level.value,
        "access_level": access_level.value,
        "jti": uuid.uuid4().hex,
        "iat": now,
        "exp": now + expires_in,
    }

    token = jwt.encode(payload, settings.jwt_secret, algorithm="HS256")
    return token, expires_in


def decode_access_token(token: str) -> dict[str, Any]:
    """Decode and verify a JWT returning its payload.

    Raises
    ------
    jwt.PyJWTError
        Propagated when the token is invalid, expired, or signed by another issuer.
    """

    settings = get_settings()
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=["HS256"],
        audience=settings.jwt_audience,
        issuer=settings.jwt_issuer,
    )


def access_level_from_claims(claims: dict[str, Any]) -> AccessLevel:
    """Return the role carried by decoded token claims."""
    try:
        return AccessLevel(claims["role"])
    except (KeyError, ValueError) as exc:
        raise ValueError("token carries no recognised role") from exc


@dataclass(frozen=True, slots=True)
class IssuedToken:
    token: str
    expires_in: int


class JwtTokenIssuer:
    """Token issuer used by :class:`LoginService` once an account is authenticated."""

    def issue(self, account: Account) -> IssuedToken:
        try:
            token, expires_in = issue_access_token(
                subject=account.account_id,
                email=account.email,
                access_level=account.access_level,
            )
        except jwt.PyJWTError as exc:
            raise TokenIssuanceError(
                f"token signing failed for account {account.account_id}"
            ) from exc
        return IssuedToken(token=token, expires_in=expires_in)
