"""
Supabase-backed credential provider and profile store.

Talks to the hosted backend over its REST APIs:
- GoTrue (/auth/v1) for passwords, sessions and token refresh
- PostgREST (/rest/v1) for the 'profiles' table

Tokens are persisted in a caller-supplied mutable mapping so a web
session (or any other store) can restore them on the next page load.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, List, MutableMapping, Optional

import requests

from sambright_access.utils.auth_providers import (
    CredentialError,
    CredentialProvider,
    CredentialSession,
    ProfileStore,
    ProfileStoreError,
    SessionCallback,
    SessionChangeNotifier,
    SessionUser,
)
from sambright_access.utils.logging import get_logger
from sambright_access.utils.rbac.jwt_parser import decode_token, is_expired, session_user_from_claims

logger = get_logger(__name__)

ACCESS_TOKEN_KEY = "access_token"
REFRESH_TOKEN_KEY = "refresh_token"
PROFILE_COLUMNS = "id,email,name,role,created_at"


def _error_message(response: requests.Response, default: str) -> str:
    try:
        payload = response.json()
    except ValueError:
        return default
    if not isinstance(payload, dict):
        return default
    for key in ("error_description", "msg", "message", "error"):
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value
    return default


def _error_code(response: requests.Response) -> Optional[str]:
    try:
        payload = response.json()
    except ValueError:
        return None
    if isinstance(payload, dict):
        code = payload.get("error_code") or payload.get("code") or payload.get("error")
        return str(code) if code else None
    return None


def _session_user_from_payload(payload: Dict[str, Any]) -> SessionUser:
    user = payload.get("user") or {}
    return SessionUser(
        id=str(user.get("id", "")),
        email=str(user.get("email") or ""),
        metadata=dict(user.get("user_metadata") or {}),
    )


class SupabaseAuthProvider(CredentialProvider):
    """
    Credential provider backed by Supabase GoTrue.

    Example:
        >>> provider = SupabaseAuthProvider("https://xyz.supabase.co", anon_key)
        >>> provider.on_session_change(print)
        >>> provider.sign_in("a@b.com", "secret")
    """

    def __init__(
        self,
        base_url: str,
        anon_key: str,
        storage: Optional[MutableMapping[str, Any]] = None,
        timeout: float = 10.0,
        jwt_secret: Optional[str] = None,
        http: Optional[requests.Session] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._anon_key = anon_key
        self._storage: MutableMapping[str, Any] = storage if storage is not None else {}
        self._timeout = timeout
        self._jwt_secret = jwt_secret
        self._http = http or requests.Session()
        self._notifier = SessionChangeNotifier()

    @property
    def storage(self) -> MutableMapping[str, Any]:
        return self._storage

    def _headers(self, access_token: Optional[str] = None) -> Dict[str, str]:
        return {
            "apikey": self._anon_key,
            "Authorization": f"Bearer {access_token or self._anon_key}",
            "Content-Type": "application/json",
        }

    def _post(self, path: str, payload: Optional[dict] = None, access_token: Optional[str] = None) -> requests.Response:
        try:
            return self._http.post(
                f"{self._base_url}/auth/v1{path}",
                json=payload or {},
                headers=self._headers(access_token),
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            logger.error(f"Auth service request to {path} failed: {exc}")
            raise CredentialError("Unable to reach the authentication service", code="network") from exc

    def _store_session(self, payload: Dict[str, Any]) -> CredentialSession:
        access_token = payload.get("access_token")
        if not access_token:
            raise CredentialError("Authentication service returned no session", code="no_session")

        expires_at = payload.get("expires_at")
        if expires_at is None and payload.get("expires_in"):
            expires_at = int(time.time()) + int(payload["expires_in"])

        session = CredentialSession(
            access_token=access_token,
            refresh_token=payload.get("refresh_token"),
            expires_at=expires_at,
            user=_session_user_from_payload(payload),
        )
        self._storage[ACCESS_TOKEN_KEY] = session.access_token
        if session.refresh_token:
            self._storage[REFRESH_TOKEN_KEY] = session.refresh_token
        return session

    def _clear_storage(self) -> None:
        self._storage.pop(ACCESS_TOKEN_KEY, None)
        self._storage.pop(REFRESH_TOKEN_KEY, None)

    def sign_in(self, email: str, password: str) -> CredentialSession:
        response = self._post("/token?grant_type=password", {"email": email, "password": password})
        if response.status_code != 200:
            raise CredentialError(
                _error_message(response, "Invalid login credentials"),
                code=_error_code(response),
                status=response.status_code,
            )
        session = self._store_session(response.json())
        logger.info(f"Signed in {email}")
        self._notifier.notify(session)
        return session

    def sign_up(self, email: str, password: str, metadata: Dict[str, Any]) -> None:
        response = self._post("/signup", {"email": email, "password": password, "data": dict(metadata)})
        if response.status_code not in (200, 201):
            raise CredentialError(
                _error_message(response, "Failed to create account"),
                code=_error_code(response),
                status=response.status_code,
            )
        # Any session returned here is ignored; users sign in explicitly
        logger.info(f"Created account for {email}")

    def sign_out(self) -> None:
        access_token = self._storage.get(ACCESS_TOKEN_KEY)
        self._clear_storage()
        try:
            if access_token:
                response = self._post("/logout", access_token=access_token)
                if response.status_code not in (200, 204):
                    logger.warning(f"Logout returned HTTP {response.status_code}")
        finally:
            self._notifier.notify(None)

    def refresh_session(self) -> Optional[CredentialSession]:
        """Exchange the stored refresh token for a new session and notify listeners."""
        session = self._refresh()
        self._notifier.notify(session)
        return session

    def _refresh(self) -> Optional[CredentialSession]:
        refresh_token = self._storage.get(REFRESH_TOKEN_KEY)
        if not refresh_token:
            self._clear_storage()
            return None
        try:
            response = self._post("/token?grant_type=refresh_token", {"refresh_token": refresh_token})
        except CredentialError:
            return None
        if response.status_code != 200:
            logger.info(f"Refresh token rejected (HTTP {response.status_code})")
            self._clear_storage()
            return None
        return self._store_session(response.json())

    def get_session(self) -> Optional[CredentialSession]:
        access_token = self._storage.get(ACCESS_TOKEN_KEY)
        if not access_token:
            return None

        claims = decode_token(access_token, secret=self._jwt_secret)
        if not claims or is_expired(claims):
            logger.info("Access token expired or invalid, refreshing")
            return self.refresh_session()

        user = session_user_from_claims(claims)
        if user is None:
            self._clear_storage()
            return None

        return CredentialSession(
            access_token=access_token,
            refresh_token=self._storage.get(REFRESH_TOKEN_KEY),
            expires_at=claims.get("exp"),
            user=user,
        )

    def on_session_change(self, callback: SessionCallback) -> Callable[[], None]:
        return self._notifier.subscribe(callback)


class SupabaseProfileStore(ProfileStore):
    """
    Profile store backed by the PostgREST 'profiles' table.

    Uses the service-role key when configured (required for deleting users),
    otherwise the anon key subject to row-level security.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        table: str = "profiles",
        service_role_key: Optional[str] = None,
        timeout: float = 10.0,
        http: Optional[requests.Session] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._table = table
        self._service_role_key = service_role_key
        self._timeout = timeout
        self._http = http or requests.Session()

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        key = self._service_role_key or self._api_key
        headers = {
            "apikey": key,
            "Authorization": f"Bearer {key}",
            "Content-Type": "application/json",
        }
        if extra:
            headers.update(extra)
        return headers

    def _request(self, method: str, url: str, timeout: Optional[float] = None, **kwargs) -> requests.Response:
        try:
            response = self._http.request(method, url, timeout=timeout or self._timeout, **kwargs)
        except requests.RequestException as exc:
            raise ProfileStoreError(f"Profile store request failed: {exc}") from exc
        if response.status_code >= 400:
            raise ProfileStoreError(
                f"Profile store returned HTTP {response.status_code}: "
                f"{_error_message(response, response.reason or 'error')}"
            )
        return response

    @property
    def _table_url(self) -> str:
        return f"{self._base_url}/rest/v1/{self._table}"

    def get_profile(self, user_id: str, timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
        response = self._request(
            "GET",
            self._table_url,
            timeout=timeout,
            params={"id": f"eq.{user_id}", "select": PROFILE_COLUMNS},
            headers=self._headers(),
        )
        rows = response.json()
        if not isinstance(rows, list) or not rows:
            return None
        return rows[0]

    def list_profiles(self) -> List[Dict[str, Any]]:
        response = self._request(
            "GET",
            self._table_url,
            params={"select": PROFILE_COLUMNS, "order": "created_at.desc"},
            headers=self._headers(),
        )
        rows = response.json()
        return rows if isinstance(rows, list) else []

    def update_role(self, user_id: str, role: str) -> Dict[str, Any]:
        response = self._request(
            "PATCH",
            self._table_url,
            params={"id": f"eq.{user_id}"},
            json={"role": role},
            headers=self._headers({"Prefer": "return=representation"}),
        )
        rows = response.json()
        if not isinstance(rows, list) or not rows:
            raise ProfileStoreError(f"No profile found for user {user_id}")
        return rows[0]

    def delete_user(self, user_id: str) -> None:
        if not self._service_role_key:
            raise ProfileStoreError("Deleting users requires the service role key")
        # Profiles cascade from auth.users
        self._request(
            "DELETE",
            f"{self._base_url}/auth/v1/admin/users/{user_id}",
            headers=self._headers(),
        )
