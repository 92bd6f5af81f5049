"""Tests for admin login and session tokens."""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi import HTTPException
from jose import jwt

import auth


class TestAuthenticateAdmin:
    def test_valid_credentials(self, admin_password):
        assert auth.authenticate_admin("admin", admin_password)

    def test_wrong_password(self, admin_password):
        assert not auth.authenticate_admin("admin", "croissant")

    def test_wrong_username(self, admin_password):
        assert not auth.authenticate_admin("baker", admin_password)

    def test_no_password_configured(self, monkeypatch):
        monkeypatch.setattr(auth, "ADMIN_PASSWORD_HASH", None)

        assert not auth.authenticate_admin("admin", "anything")


class TestRequireAdmin:
    def test_accepts_fresh_token(self):
        token, expires_at = auth.create_token("admin")

        payload = auth.require_admin(f"Bearer {token}")

        assert payload["sub"] == "admin"
        assert expires_at - datetime.now(timezone.utc) <= timedelta(hours=24)

    def test_missing_header(self):
        with pytest.raises(HTTPException) as exc:
            auth.require_admin(None)
        assert exc.value.status_code == 401

    def test_expired_token(self):
        token, _ = auth.create_token("admin", now=datetime.now(timezone.utc) - timedelta(hours=25))

        with pytest.raises(HTTPException) as exc:
            auth.require_admin(f"Bearer {token}")
        assert exc.value.status_code == 401

    def test_foreign_signature(self):
        token = jwt.encode({"sub": "admin", "is_admin": True}, "another-secret", algorithm="HS256")

        with pytest.raises(HTTPException) as exc:
            auth.require_admin(f"Bearer {token}")
        assert exc.value.status_code == 401

    def test_non_admin_token(self):
        token = jwt.encode({"sub": "guest", "is_admin": False}, auth.JWT_SECRET, algorithm="HS256")

        with pytest.raises(HTTPException) as exc:
            auth.require_admin(f"Bearer {token}")
        assert exc.value.status_code == 403
