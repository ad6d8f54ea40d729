from __future__ import annotations

import base64
import hashlib

import pytest

from storefront_identity.security.passwords import KEY_SIZE, Pbkdf2PasswordVerifier


def test_hash_round_trip(password_verifier):
    stored = password_verifier.hash_password("s3cret-Passw0rd")

    assert password_verifier.verify("s3cret-Passw0rd", stored)
    assert not password_verifier.verify("s3cret-passw0rd", stored)


def test_hash_uses_salt_and_key_format(password_verifier):
    stored = password_verifier.hash_password("s3cret-Passw0rd")
    salt_b64, key_b64 = stored.split(";")

    assert len(base64.b64decode(salt_b64)) == 16
    assert len(base64.b64decode(key_b64)) == KEY_SIZE
    assert stored != password_verifier.hash_password("s3cret-Passw0rd")


def test_verifies_hash_in_existing_storage_format():
    salt = bytes(range(16))
    key = hashlib.pbkdf2_hmac("sha256", b"Admin@123", salt, 100_000, dklen=32)
    stored = f"{base64.b64encode(salt).decode()};{base64.b64encode(key).decode()}"

    verifier = Pbkdf2PasswordVerifier()

    assert verifier.verify("Admin@123", stored)
    assert not verifier.verify("admin@123", stored)


@pytest.mark.parametrize(
    "stored",
    [
        "",
        "no-delimiter",
        "a;b;c",
        "!!!;???",
        "$2a$11$dummyhashfortimingattackprotection1234567890123456789012",
        base64.b64encode(b"salt").decode() + ";" + base64.b64encode(b"short").decode(),
        None,
    ],
)
def test_malformed_hash_fails_closed(password_verifier, stored):
    assert password_verifier.verify("anything", stored) is False


def test_dummy_hash_is_well_formed_and_never_matches(password_verifier):
    salt_b64, key_b64 = password_verifier.dummy_hash.split(";")

    assert len(base64.b64decode(key_b64)) == KEY_SIZE
    assert not password_verifier.verify("", password_verifier.dummy_hash)
    assert not password_verifier.verify("password", password_verifier.dummy_hash)


def test_blank_password_cannot_be_hashed(password_verifier):
    with pytest.raises(ValueError):
        password_verifier.hash_password("   ")


@pytest.mark.parametrize("stored", ["not-a-hash", "c2FsdA==;c2hvcnQ="])
def test_malformed_hash_still_pays_for_a_derivation(stored, monkeypatch):
    verifier = Pbkdf2PasswordVerifier(iterations=1_000)
    derived = []
    original = verifier._derive

    def counting_derive(password, salt):
        derived.append(salt)
        return original(password, salt)

    monkeypatch.setattr(verifier, "_derive", counting_derive)

    assert verifier.verify("anything", stored) is False
    assert len(derived) == 1


def test_lone_surrogate_password_is_a_mismatch(password_verifier, password_hash):
    assert password_verifier.verify("guess\ud800", password_hash) is False
