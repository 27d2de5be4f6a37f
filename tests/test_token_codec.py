"""Tests for token signing, verification and duration parsing."""

from datetime import UTC, datetime, timedelta

import jwt
import pytest

from wellmesh.services.token_codec import (
    InvalidSignatureError,
    TokenExpiredError,
    parse_duration,
    sign,
    verify,
)

SECRET = "a" * 32
OTHER_SECRET = "b" * 32


class TestParseDuration:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("1h", 3600),
            ("1d", 86400),
            ("30m", 1800),
            ("90s", 90),
            ("2w", 1209600),
            ("45", 45),
            (" 1H ", 3600),
            (120, 120),
            (timedelta(minutes=5), 300),
        ],
    )
    def test_valid(self, value, expected):
        assert parse_duration(value) == expected

    @pytest.mark.parametrize("value", ["", "h", "1y", "-1h", "1.5h", "0", 0, -5, True])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            parse_duration(value)


class TestSignVerify:
    def test_round_trip_adds_expiry(self):
        token = sign({"id": 7, "role": "staff"}, SECRET, "1h")
        payload = verify(token, SECRET)

        assert payload["id"] == 7
        assert payload["role"] == "staff"
        assert payload["exp"] - payload["iat"] == 3600

    def test_verification_is_idempotent(self):
        """Verifying the same token twice yields the same payload."""
        token = sign({"id": 1}, SECRET, "1h")
        assert verify(token, SECRET) == verify(token, SECRET)

    def test_wrong_secret_rejected(self):
        token = sign({"id": 1}, OTHER_SECRET, "1h")
        with pytest.raises(InvalidSignatureError):
            verify(token, SECRET)

    def test_expired_rejected(self):
        past = datetime.now(UTC) - timedelta(minutes=5)
        token = jwt.encode({"id": 1, "exp": past}, SECRET, algorithm="HS256")
        with pytest.raises(TokenExpiredError):
            verify(token, SECRET)

    def test_missing_exp_rejected(self):
        token = jwt.encode({"id": 1}, SECRET, algorithm="HS256")
        with pytest.raises(InvalidSignatureError):
            verify(token, SECRET)

    def test_garbage_rejected(self):
        with pytest.raises(InvalidSignatureError):
            verify("not-a-token", SECRET)

    def test_tampered_payload_rejected(self):
        token = sign({"id": 1, "role": "staff"}, SECRET, "1h")
        header, _, signature = token.split(".")
        forged_body = jwt.encode(
            {"id": 1, "role": "admin", "exp": datetime.now(UTC) + timedelta(hours=1)},
            OTHER_SECRET,
        ).split(".")[1]
        with pytest.raises(InvalidSignatureError):
            verify(f"{header}.{forged_body}.{signature}", SECRET)

    def test_algorithm_none_rejected(self):
        token = jwt.encode(
            {"id": 1, "exp": datetime.now(UTC) + timedelta(hours=1)}, None, algorithm="none"
        )
        with pytest.raises(InvalidSignatureError):
            verify(token, SECRET)
