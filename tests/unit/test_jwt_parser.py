"""
Unit tests for the access-token helpers.
"""
import time

import jwt
import pytest

from sambright_access.utils.rbac.jwt_parser import decode_token, is_expired, session_user_from_claims

SECRET = "jwt-parser-test-secret-0123456789abcdef"


def _encode(claims, secret=SECRET):
    return jwt.encode(claims, secret, algorithm="HS256")


class TestDecodeToken:

    def test_verified_decode(self):
        token = _encode({"sub": "u-1", "aud": "authenticated", "exp": int(time.time()) + 60})
        assert decode_token(token, secret=SECRET)["sub"] == "u-1"

    def test_wrong_secret_returns_empty(self):
        token = _encode({"sub": "u-1", "aud": "authenticated", "exp": int(time.time()) + 60})
        assert decode_token(token, secret="another-secret-0123456789abcdef-xyz") == {}

    def test_expired_returns_empty(self):
        token = _encode({"sub": "u-1", "aud": "authenticated", "exp": int(time.time()) - 60})
        assert decode_token(token, secret=SECRET) == {}

    def test_wrong_audience_returns_empty(self):
        token = _encode({"sub": "u-1", "aud": "anon", "exp": int(time.time()) + 60})
        assert decode_token(token, secret=SECRET) == {}

    def test_unverified_decode_reads_claims(self):
        token = _encode({"sub": "u-1", "exp": int(time.time()) - 60}, secret="some-other-secret-0123456789abcdef")
        assert decode_token(token)["sub"] == "u-1"

    @pytest.mark.parametrize("token", ["", "not-a-jwt", "a.b.c"])
    def test_garbage_returns_empty(self, token):
        assert decode_token(token) == {}


class TestClaims:

    def test_is_expired(self):
        now = int(time.time())
        assert is_expired({"exp": now - 1})
        assert not is_expired({"exp": now + 120})
        assert is_expired({"exp": now + 10}, leeway=30)

    def test_missing_exp_is_expired(self):
        assert is_expired({})
        assert is_expired({"exp": "soon"})

    def test_session_user_from_claims(self):
        user = session_user_from_claims({"sub": "u-1", "email": "a@b.com", "user_metadata": {"name": "Ann"}})
        assert user.id == "u-1"
        assert user.email == "a@b.com"
        assert user.metadata == {"name": "Ann"}

    def test_no_subject(self):
        assert session_user_from_claims({"email": "a@b.com"}) is None

    def test_bad_metadata_is_dropped(self):
        user = session_user_from_claims({"sub": "u-1", "user_metadata": "oops"})
        assert user.metadata == {}
        assert user.email == ""

    def test_role_claim_is_not_used(self):
        user = session_user_from_claims({"sub": "u-1", "role": "super_admin", "user_metadata": {}})
        assert "role" not in user.metadata
