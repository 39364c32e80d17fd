"""
tests/test_tokens.py -- Unit tests for auth/tokens.py.

Coverage:
  - bcrypt hash/verify round trip and malformed-hash handling
  - authenticate_user: success, wrong password, unknown email
  - create_token / decode_token: claims, expiry, tampering, missing claims
  - link tokens: length, alphabet, HMAC determinism
  - generate_otp: six digits, DEV_OTP_CODE only in debug mode
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone

from jose import jwt

import auth.tokens as tokens
from auth.models import TokenType, User
from auth.tokens import (
    authenticate_user,
    create_token,
    create_token_pair,
    decode_token,
    generate_link_token,
    generate_otp,
    hash_link_token,
    hash_password,
    token_type_of,
    verify_password,
)
from core.config import get_settings

_SECRET = get_settings().secret_key


class TestPasswords:
    def test_hash_and_verify(self) -> None:
        hashed = hash_password("s3cret-password")
        assert hashed != "s3cret-password"
        assert verify_password("s3cret-password", hashed)
        assert not verify_password("wrong-password", hashed)

    def test_verify_against_malformed_hash_is_false(self) -> None:
        assert verify_password("anything", "not-a-bcrypt-hash") is False


class TestAuthenticateUser:
    def test_valid_credentials_return_user(self, store) -> None:
        store.create_user(User(email="alice@example.com", hashed_password=hash_password("pw-12345678")), datetime.now(timezone.utc))
        user = authenticate_user(store, "alice@example.com", "pw-12345678")
        assert user is not None
        assert user.email == "alice@example.com"

    def test_wrong_password_returns_none(self, store) -> None:
        store.create_user(User(email="alice@example.com", hashed_password=hash_password("pw-12345678")), datetime.now(timezone.utc))
        assert authenticate_user(store, "alice@example.com", "nope-nope") is None

    def test_unknown_email_returns_none(self, store) -> None:
        assert authenticate_user(store, "ghost@example.com", "pw-12345678") is None


class TestJwt:
    def test_claims(self) -> None:
        payload = decode_token(create_token(TokenType.ACCESS, 7))
        assert payload["type"] == "access_token"
        assert payload["user_id"] == 7
        assert payload["sub"] == "7"
        assert token_type_of(payload) is TokenType.ACCESS

    def test_pair_types(self) -> None:
        pair = create_token_pair(3)
        assert token_type_of(decode_token(pair["access_token"])) is TokenType.ACCESS
        assert token_type_of(decode_token(pair["refresh_token"])) is TokenType.REFRESH

    def test_custom_lifetime(self) -> None:
        payload = decode_token(create_token(TokenType.OTP_VERIFICATION, 1, expire_seconds=30))
        remaining = payload["exp"] - datetime.now(timezone.utc).timestamp()
        assert 0 < remaining <= 30

    def test_expired_token_is_none(self) -> None:
        expired = jwt.encode(
            {"type": "access_token", "sub": "1", "user_id": 1, "exp": datetime.now(timezone.utc) - timedelta(seconds=5)},
            _SECRET,
            algorithm="HS256",
        )
        assert decode_token(expired) is None

    def test_wrong_key_is_none(self) -> None:
        forged = jwt.encode(
            {"type": "access_token", "sub": "1", "user_id": 1, "exp": datetime.now(timezone.utc) + timedelta(minutes=5)},
            "x" * 40,
            algorithm="HS256",
        )
        assert decode_token(forged) is None

    def test_tampered_token_is_none(self) -> None:
        token = create_token(TokenType.ACCESS, 1)
        header, _, signature = token.split(".")
        other_payload = create_token(TokenType.ACCESS, 2).split(".")[1]
        assert decode_token(".".join([header, other_payload, signature])) is None

    def test_missing_type_is_none(self) -> None:
        token = jwt.encode(
            {"sub": "1", "user_id": 1, "exp": datetime.now(timezone.utc) + timedelta(minutes=5)},
            _SECRET,
            algorithm="HS256",
        )
        assert decode_token(token) is None

    def test_non_integer_user_id_is_none(self) -> None:
        token = jwt.encode(
            {"type": "access_token", "sub": "1", "user_id": "1", "exp": datetime.now(timezone.utc) + timedelta(minutes=5)},
            _SECRET,
            algorithm="HS256",
        )
        assert decode_token(token) is None

    def test_unknown_type_maps_to_none(self) -> None:
        assert token_type_of({"type": "session"}) is None

    def test_garbage_is_none(self) -> None:
        assert decode_token("not-a-jwt") is None


class TestVerificationCodes:
    def test_link_token_shape(self) -> None:
        token = generate_link_token()
        assert len(token) == 48
        assert re.fullmatch(r"[A-Za-z0-9_\-]+", token)
        assert token != generate_link_token()

    def test_hash_link_token_is_deterministic_hmac(self) -> None:
        assert hash_link_token("abc") == hash_link_token("abc")
        assert hash_link_token("abc") != hash_link_token("abd")
        assert re.fullmatch(r"[0-9a-f]{64}", hash_link_token("abc"))

    def test_otp_is_six_digits(self) -> None:
        for _ in range(50):
            assert re.fullmatch(r"\d{6}", generate_otp())

    def test_dev_otp_code_used_in_debug(self, monkeypatch) -> None:
        settings = get_settings().model_copy(update={"debug": True, "dev_otp_code": "123456"})
        monkeypatch.setattr(tokens, "_settings", settings)
        assert generate_otp() == "123456"

    def test_dev_otp_code_ignored_outside_debug(self, monkeypatch) -> None:
        settings = get_settings().model_copy(update={"debug": False, "dev_otp_code": "123456"})
        monkeypatch.setattr(tokens, "_settings", settings)
        otps = {generate_otp() for _ in range(5)}
        assert otps != {"123456"}
