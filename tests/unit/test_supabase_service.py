"""
Unit tests for the Supabase credential provider and profile store.

HTTP is mocked with a MagicMock standing in for requests.Session.
"""
import time

import jwt
import pytest
import requests
from unittest.mock import MagicMock

from sambright_access.utils.auth_providers import CredentialError, ProfileStoreError
from sambright_access.utils.supabase_service import (
    ACCESS_TOKEN_KEY,
    PROFILE_COLUMNS,
    REFRESH_TOKEN_KEY,
    SupabaseAuthProvider,
    SupabaseProfileStore,
)

BASE_URL = "https://demo.supabase.co"
JWT_SECRET = "super-secret-jwt-key-for-tests-0123456789"


def _response(status=200, payload=None):
    response = MagicMock(spec=requests.Response)
    response.status_code = status
    response.reason = "reason"
    if isinstance(payload, Exception):
        response.json.side_effect = payload
    else:
        response.json.return_value = payload
    return response


def _token(sub="u-1", email="a@b.com", exp_offset=3600, **extra):
    claims = {
        "sub": sub,
        "email": email,
        "aud": "authenticated",
        "exp": int(time.time()) + exp_offset,
        "user_metadata": {"name": "Ann"},
        **extra,
    }
    return jwt.encode(claims, JWT_SECRET, algorithm="HS256")


def _session_payload(token=None, refresh="r-1"):
    return {
        "access_token": token or _token(),
        "refresh_token": refresh,
        "expires_in": 3600,
        "user": {"id": "u-1", "email": "a@b.com", "user_metadata": {"name": "Ann"}},
    }


@pytest.fixture
def http():
    return MagicMock()


@pytest.fixture
def auth(http):
    return SupabaseAuthProvider(BASE_URL + "/", "anon-key", storage={}, jwt_secret=JWT_SECRET, http=http)


# =============================================================================
# SupabaseAuthProvider
# =============================================================================

class TestSupabaseAuthProvider:

    def test_sign_in_stores_tokens_and_notifies(self, auth, http):
        http.post.return_value = _response(200, _session_payload())
        seen = []
        auth.on_session_change(seen.append)

        session = auth.sign_in("a@b.com", "secret1")

        url = http.post.call_args[0][0]
        assert url == f"{BASE_URL}/auth/v1/token?grant_type=password"
        assert http.post.call_args[1]["json"] == {"email": "a@b.com", "password": "secret1"}
        assert http.post.call_args[1]["headers"]["apikey"] == "anon-key"
        assert session.user.id == "u-1"
        assert session.expires_at is not None
        assert auth.storage[ACCESS_TOKEN_KEY] == session.access_token
        assert auth.storage[REFRESH_TOKEN_KEY] == "r-1"
        assert seen == [session]

    def test_sign_in_rejected(self, auth, http):
        http.post.return_value = _response(400, {"error": "invalid_grant", "error_description": "Invalid login credentials"})
        seen = []
        auth.on_session_change(seen.append)
        with pytest.raises(CredentialError) as exc_info:
            auth.sign_in("a@b.com", "bad")
        assert exc_info.value.message == "Invalid login credentials"
        assert exc_info.value.code == "invalid_grant"
        assert exc_info.value.status == 400
        assert seen == []
        assert auth.storage == {}

    def test_sign_in_non_json_error_uses_default(self, auth, http):
        http.post.return_value = _response(500, ValueError("not json"))
        with pytest.raises(CredentialError, match="Invalid login credentials"):
            auth.sign_in("a@b.com", "bad")

    def test_network_error(self, auth, http):
        http.post.side_effect = requests.ConnectionError("refused")
        with pytest.raises(CredentialError) as exc_info:
            auth.sign_in("a@b.com", "secret1")
        assert exc_info.value.code == "network"

    def test_sign_in_without_token(self, auth, http):
        http.post.return_value = _response(200, {"user": {"id": "u-1"}})
        with pytest.raises(CredentialError) as exc_info:
            auth.sign_in("a@b.com", "secret1")
        assert exc_info.value.code == "no_session"

    def test_sign_up_sends_metadata_and_does_not_sign_in(self, auth, http):
        http.post.return_value = _response(200, _session_payload())
        seen = []
        auth.on_session_change(seen.append)

        auth.sign_up("a@b.com", "secret1", {"name": "Ann", "role": "field"})

        assert http.post.call_args[0][0] == f"{BASE_URL}/auth/v1/signup"
        assert http.post.call_args[1]["json"]["data"] == {"name": "Ann", "role": "field"}
        assert seen == []
        assert auth.storage == {}

    def test_sign_up_rejected(self, auth, http):
        http.post.return_value = _response(422, {"msg": "User already registered"})
        with pytest.raises(CredentialError, match="User already registered"):
            auth.sign_up("a@b.com", "secret1", {})

    def test_sign_out_clears_storage_and_notifies_none(self, auth, http):
        token = _token()
        auth.storage.update({ACCESS_TOKEN_KEY: token, REFRESH_TOKEN_KEY: "r-1"})
        http.post.return_value = _response(204)
        seen = []
        auth.on_session_change(seen.append)

        auth.sign_out()

        assert http.post.call_args[0][0] == f"{BASE_URL}/auth/v1/logout"
        assert http.post.call_args[1]["headers"]["Authorization"] == f"Bearer {token}"
        assert auth.storage == {}
        assert seen == [None]

    def test_sign_out_notifies_even_when_network_fails(self, auth, http):
        auth.storage[ACCESS_TOKEN_KEY] = _token()
        http.post.side_effect = requests.Timeout("slow")
        seen = []
        auth.on_session_change(seen.append)
        with pytest.raises(CredentialError):
            auth.sign_out()
        assert seen == [None]
        assert auth.storage == {}

    def test_get_session_without_token(self, auth):
        assert auth.get_session() is None

    def test_get_session_from_valid_token(self, auth, http):
        auth.storage[ACCESS_TOKEN_KEY] = _token(sub="u-9", email="z@b.com")
        session = auth.get_session()
        assert session.user.id == "u-9"
        assert session.user.email == "z@b.com"
        assert session.user.metadata == {"name": "Ann"}
        http.post.assert_not_called()

    def test_get_session_refreshes_expired_token(self, auth, http):
        auth.storage.update({ACCESS_TOKEN_KEY: _token(exp_offset=-60), REFRESH_TOKEN_KEY: "r-old"})
        http.post.return_value = _response(200, _session_payload(refresh="r-new"))

        session = auth.get_session()

        assert http.post.call_args[0][0] == f"{BASE_URL}/auth/v1/token?grant_type=refresh_token"
        assert http.post.call_args[1]["json"] == {"refresh_token": "r-old"}
        assert session is not None
        assert auth.storage[REFRESH_TOKEN_KEY] == "r-new"

    def test_get_session_announces_token_refresh(self, auth, http):
        auth.storage.update({ACCESS_TOKEN_KEY: _token(exp_offset=-60), REFRESH_TOKEN_KEY: "r-old"})
        http.post.return_value = _response(200, _session_payload(refresh="r-new"))
        seen = []
        auth.on_session_change(seen.append)

        session = auth.get_session()

        assert seen == [session]

    def test_get_session_announces_failed_refresh(self, auth, http):
        auth.storage.update({ACCESS_TOKEN_KEY: _token(exp_offset=-60), REFRESH_TOKEN_KEY: "r-old"})
        http.post.return_value = _response(400, {"error": "invalid_grant"})
        seen = []
        auth.on_session_change(seen.append)
        assert auth.get_session() is None
        assert seen == [None]

    def test_get_session_refresh_rejected_clears_storage(self, auth, http):
        auth.storage.update({ACCESS_TOKEN_KEY: _token(exp_offset=-60), REFRESH_TOKEN_KEY: "r-old"})
        http.post.return_value = _response(400, {"error": "invalid_grant"})
        assert auth.get_session() is None
        assert auth.storage == {}

    def test_get_session_with_forged_token(self, auth):
        forged = jwt.encode({"sub": "u-1", "aud": "authenticated", "exp": int(time.time()) + 60}, "wrong-secret-of-sufficient-length-000", algorithm="HS256")
        auth.storage[ACCESS_TOKEN_KEY] = forged
        assert auth.get_session() is None

    def test_refresh_session_notifies(self, auth, http):
        auth.storage[REFRESH_TOKEN_KEY] = "r-1"
        http.post.return_value = _response(200, _session_payload())
        seen = []
        auth.on_session_change(seen.append)
        session = auth.refresh_session()
        assert seen == [session]

    def test_unsubscribe(self, auth, http):
        http.post.return_value = _response(200, _session_payload())
        seen = []
        unsubscribe = auth.on_session_change(seen.append)
        unsubscribe()
        auth.sign_in("a@b.com", "secret1")
        assert seen == []


# =============================================================================
# SupabaseProfileStore
# =============================================================================

class TestSupabaseProfileStore:

    @pytest.fixture
    def store(self, http):
        return SupabaseProfileStore(BASE_URL, "anon-key", http=http)

    def test_get_profile(self, store, http):
        row = {"id": "u-1", "email": "a@b.com", "name": "Ann", "role": "field"}
        http.request.return_value = _response(200, [row])

        assert store.get_profile("u-1", timeout=3.0) == row

        method, url = http.request.call_args[0]
        kwargs = http.request.call_args[1]
        assert method == "GET"
        assert url == f"{BASE_URL}/rest/v1/profiles"
        assert kwargs["params"] == {"id": "eq.u-1", "select": PROFILE_COLUMNS}
        assert kwargs["timeout"] == 3.0

    def test_get_profile_missing(self, store, http):
        http.request.return_value = _response(200, [])
        assert store.get_profile("u-1") is None

    def test_http_error_raises(self, store, http):
        http.request.return_value = _response(503, {"message": "unavailable"})
        with pytest.raises(ProfileStoreError, match="503"):
            store.get_profile("u-1")

    def test_network_error_raises(self, store, http):
        http.request.side_effect = requests.Timeout("slow")
        with pytest.raises(ProfileStoreError):
            store.get_profile("u-1")

    def test_list_profiles_newest_first(self, store, http):
        http.request.return_value = _response(200, [{"id": "u-2"}, {"id": "u-1"}])
        assert store.list_profiles() == [{"id": "u-2"}, {"id": "u-1"}]
        assert http.request.call_args[1]["params"]["order"] == "created_at.desc"

    def test_update_role(self, store, http):
        http.request.return_value = _response(200, [{"id": "u-1", "role": "customer_service"}])
        store.update_role("u-1", "customer_service")
        kwargs = http.request.call_args[1]
        assert http.request.call_args[0][0] == "PATCH"
        assert kwargs["json"] == {"role": "customer_service"}
        assert kwargs["headers"]["Prefer"] == "return=representation"

    def test_update_role_missing_profile(self, store, http):
        http.request.return_value = _response(200, [])
        with pytest.raises(ProfileStoreError):
            store.update_role("u-1", "field")

    def test_delete_requires_service_role_key(self, store, http):
        with pytest.raises(ProfileStoreError, match="service role"):
            store.delete_user("u-1")
        http.request.assert_not_called()

    def test_delete_user(self, http):
        store = SupabaseProfileStore(BASE_URL, "anon-key", service_role_key="service-key", http=http)
        http.request.return_value = _response(200, {})
        store.delete_user("u-1")
        method, url = http.request.call_args[0]
        assert method == "DELETE"
        assert url == f"{BASE_URL}/auth/v1/admin/users/u-1"
        assert http.request.call_args[1]["headers"]["Authorization"] == "Bearer service-key"
