"""
Tests for JWT token utilities.

Tests cover:
- Access token creation
- Decoding, expiry and tampering
"""

from datetime import datetime, timedelta, timezone

import jwt

from app.core.config import settings
from app.core.jwt import create_access_token, decode_access_token


class TestAccessToken:
    """Tests for access token creation and validation."""

    def test_round_trip_subject(self):
        token = create_access_token("owner@example.com")
        assert decode_access_token(token) == "owner@example.com"

    def test_default_expiry(self):
        token = create_access_token("owner@example.com")

        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        expected = datetime.now(timezone.utc) + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
        assert abs(payload["exp"] - expected.timestamp()) < 60

    def test_expired_token_rejected(self):
        token = create_access_token("owner@example.com", expires_delta=timedelta(seconds=-10))
        assert decode_access_token(token) is None

    def test_wrong_secret_rejected(self):
        token = jwt.encode({"sub": "owner@example.com"}, "another-secret", algorithm=settings.ALGORITHM)
        assert decode_access_token(token) is None

    def test_missing_subject_rejected(self):
        token = jwt.encode({"exp": datetime.now(timezone.utc) + timedelta(minutes=5)}, settings.SECRET_KEY)
        assert decode_access_token(token) is None

    def test_garbage_rejected(self):
        assert decode_access_token("not-a-jwt") is None
