import time

import jwt
import pytest
from fastapi import HTTPException

from app.dependencies.auth import get_current_user, require_admin, verify_supabase_token
from app.models.user import UserRole
from conftest import make_user

SECRET = "test-supabase-jwt-secret-with-enough-bytes"


def bearer(claims, secret=SECRET, algorithm="HS256"):
    payload = {"aud": "authenticated", "exp": int(time.time()) + 600, **claims}
    return "Bearer " + jwt.encode(payload, secret, algorithm=algorithm)


@pytest.fixture(autouse=True)
def jwt_secret(monkeypatch):
    monkeypatch.setenv("SUPABASE_JWT_SECRET", SECRET)


class TestVerifySupabaseToken:
    def test_valid_hs256_token(self):
        payload = verify_supabase_token(bearer({"sub": "abc", "email": "a@example.com"}))

        assert payload["sub"] == "abc"

    @pytest.mark.parametrize("header", [None, "Token abc", "Bearer null", "Bearer not-a-jwt"])
    def test_malformed_headers(self, header):
        with pytest.raises(HTTPException) as exc:
            verify_supabase_token(header)
        assert exc.value.status_code == 401

    def test_wrong_secret(self):
        with pytest.raises(HTTPException) as exc:
            verify_supabase_token(bearer({"sub": "abc"}, secret="another-secret-that-is-long-enough-too"))
        assert exc.value.status_code == 401

    def test_expired_token(self):
        token = bearer({"sub": "abc", "exp": int(time.time()) - 10})

        with pytest.raises(HTTPException) as exc:
            verify_supabase_token(token)
        assert exc.value.status_code == 401

    def test_missing_secret_is_server_error(self, monkeypatch):
        monkeypatch.delenv("SUPABASE_JWT_SECRET")

        with pytest.raises(HTTPException) as exc:
            verify_supabase_token(bearer({"sub": "abc"}))
        assert exc.value.status_code == 500


class TestCurrentUser:
    def test_resolves_by_supabase_id(self, db):
        admin = make_user(db, "admin@example.com", role=UserRole.ADMIN, supabase_id="sb-admin")

        user = get_current_user(bearer({"sub": "sb-admin", "email": "changed@example.com"}), db)

        assert user.id == admin.id

    def test_falls_back_to_email(self, db):
        owner = make_user(db, "Owner@Example.com")

        user = get_current_user(bearer({"sub": "sb-new", "email": "owner@example.com"}), db)

        assert user.id == owner.id

    def test_unknown_user_is_forbidden(self, db):
        with pytest.raises(HTTPException) as exc:
            get_current_user(bearer({"sub": "sb-ghost", "email": "ghost@example.com"}), db)
        assert exc.value.status_code == 403

    def test_require_admin(self, db, reseller):
        admin = make_user(db, "admin@example.com", role=UserRole.ADMIN)

        assert require_admin(admin) is admin
        with pytest.raises(HTTPException) as exc:
            require_admin(reseller)
        assert exc.value.status_code == 403
