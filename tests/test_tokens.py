from __future__ import annotations

import jwt
import pytest

from storefront_identity.config import get_settings
from storefront_identity.domain.account import Account, AccessLevel
from storefront_identity.domain.errors import TokenIssuanceError
from storefront_identity.security import tokens
from storefront_identity.security.tokens import (
    JwtTokenIssuer,
    access_level_from_claims,
    decode_access_token,
    issue_access_token,
)


def test_issued_token_carries_identity_and_role():
    token, expires_in = issue_access_token(
        subject="acct-42", email="admin@example.com", access_level=AccessLevel.admin
    )

    claims = decode_access_token(token)
    settings = get_settings()
    assert expires_in == settings.jwt_ttl_seconds
    assert claims["sub"] == "acct-42"
    assert claims["email"] == "admin@example.com"
    assert claims["role"] == "Admin"
    assert claims["iss"] == settings.jwt_issuer
    assert claims["aud"] == settings.jwt_audience
    assert claims["exp"] - claims["iat"] == expires_in


def test_issuer_adapter_uses_account_fields():
    account = Account(
        account_id="acct-7",
        email="vendor@example.com",
        password_hash="unused",
        access_level=AccessLevel.company,
    )

    issued = JwtTokenIssuer().issue(account)

    claims = decode_access_token(issued.token)
    assert claims["sub"] == "acct-7"
    assert access_level_from_claims(claims) is AccessLevel.company
    assert issued.expires_in == get_settings().jwt_ttl_seconds


def test_tokens_are_unique_per_issue():
    first, _ = issue_access_token(subject="a", email="a@example.com", access_level=AccessLevel.guest)
    second, _ = issue_access_token(subject="a", email="a@example.com", access_level=AccessLevel.guest)

    assert first != second


def test_foreign_signature_is_rejected():
    token = jwt.encode({"sub": "x", "role": "Admin"}, "another-secret", algorithm="HS256")

    with pytest.raises(jwt.PyJWTError):
        decode_access_token(token)


def test_unknown_role_claim_is_rejected():
    with pytest.raises(ValueError):
        access_level_from_claims({"role": "Root"})
    with pytest.raises(ValueError):
        access_level_from_claims({})


def test_signing_failure_is_reported_as_token_issuance_error(monkeypatch):
    def broken_encode(*_args, **_kwargs):
        raise jwt.InvalidKeyError("unusable signing key")

    monkeypatch.setattr(tokens.jwt, "encode", broken_encode)
    account = Account(
        account_id="acct-9",
        email="ops@example.com",
        password_hash="unused",
        access_level=AccessLevel.developer,
    )

    with pytest.raises(TokenIssuanceError):
        JwtTokenIssuer().issue(account)
