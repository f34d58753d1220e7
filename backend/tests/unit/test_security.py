"""Unit tests for portfolio.core.security."""
from datetime import timedelta

import pytest
from jose import JWTError
from pydantic import SecretStr

from portfolio.core.security import (
    create_access_token,
    create_refresh_token,
    decode_token,
    hash_password,
    verify_password,
)


# ─── Password hashing ─────────────────────────────────────────────────────────

def test_hash_password_produces_bcrypt_hash():
    h = hash_password("hunter2")
    assert h.startswith("$2b$")


def test_verify_password_correct():
    h = hash_password("correct-horse")
    assert verify_password("correct-horse", h) is True


def test_verify_password_wrong():
    h = hash_password("correct-horse")
    assert verify_password("wrong-password", h) is False


def test_hash_is_non_deterministic():
    """bcrypt should produce different hashes for the same input."""
    assert hash_password("same") != hash_password("same")


def test_long_passphrases_are_not_truncated():
    base = "x" * 80
    h = hash_password(base + "a")
    assert verify_password(base + "a", h) is True
    assert verify_password(base + "b", h) is False


def test_verify_password_malformed_hash_is_false():
    assert verify_password("anything", "not-a-bcrypt-hash") is False


# ─── JWT ──────────────────────────────────────────────────────────────────────

def test_create_and_decode_access_token(settings):
    token = create_access_token("user-123", "editor", settings=settings)
    payload = decode_token(token, settings=settings)
    assert payload["sub"] == "user-123"
    assert payload["role"] == "editor"
    assert payload["type"] == "access"


def test_create_and_decode_refresh_token(settings):
    token = create_refresh_token("user-456", settings=settings)
    payload = decode_token(token, settings=settings)
    assert payload["sub"] == "user-456"
    assert payload["type"] == "refresh"
    assert "role" not in payload


def test_tokens_are_unique(settings):
    assert create_access_token("x", "user", settings=settings) != create_access_token(
        "x", "user", settings=settings
    )


def test_expired_token_raises(settings):
    token = create_access_token(
        "x", "user", expires_delta=timedelta(seconds=-1), settings=settings
    )
    with pytest.raises(JWTError):
        decode_token(token, settings=settings)


def test_tampered_token_raises(settings):
    token = create_access_token("x", "user", settings=settings)
    bad = token[:-4] + ("aaaa" if not token.endswith("aaaa") else "bbbb")
    with pytest.raises(JWTError):
        decode_token(bad, settings=settings)


def test_token_signed_with_other_secret_raises(settings):
    other = settings.model_copy(
        update={"jwt_secret_key": SecretStr("another-secret-key-that-is-long-enough")}
    )
    token = create_access_token("x", "user", settings=other)
    with pytest.raises(JWTError):
        decode_token(token, settings=settings)
