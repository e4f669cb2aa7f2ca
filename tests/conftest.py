"""
Shared fakes for the access-control tests.

FakeCredentialProvider and FakeProfileStore stand in for the hosted
authentication service and the profiles table.
"""
import threading
from typing import Any, Dict, List, Optional

import pytest

from sambright_access.utils.auth_providers import (
    CredentialError,
    CredentialProvider,
    CredentialSession,
    ProfileStore,
    ProfileStoreError,
    SessionChangeNotifier,
    SessionUser,
)
from sambright_access.utils.rbac.registry import reset_registry


class FakeCredentialProvider(CredentialProvider):
    """In-memory credential provider: accounts are email -> (password, user)."""

    def __init__(self, storage=None):
        self.storage = storage if storage is not None else {}
        self.accounts: Dict[str, Dict[str, Any]] = {}
        self.sign_up_calls: List[Dict[str, Any]] = []
        self.sign_out_error: Optional[Exception] = None
        self.sign_in_error: Optional[Exception] = None
        self.rotate_on_get = False
        self._notifier = SessionChangeNotifier()

    def add_account(self, email: str, password: str, user_id: str, name: str = ""):
        self.accounts[email] = {
            'password': password,
            'user': SessionUser(id=user_id, email=email, metadata={'name': name} if name else {}),
        }

    def _session_for(self, user: SessionUser) -> CredentialSession:
        return CredentialSession(access_token=f"token-{user.id}", user=user, refresh_token=f"refresh-{user.id}")

    def sign_in(self, email, password):
        if self.sign_in_error is not None:
            raise self.sign_in_error
        account = self.accounts.get(email)
        if account is None or account['password'] != password:
            raise CredentialError("Invalid login credentials", code="invalid_credentials", status=400)
        session = self._session_for(account['user'])
        self.storage['access_token'] = session.access_token
        self.storage['user_id'] = account['user'].id
        self.storage['email'] = email
        self._notifier.notify(session)
        return session

    def sign_up(self, email, password, metadata):
        self.sign_up_calls.append({'email': email, 'password': password, 'metadata': dict(metadata)})
        if email in self.accounts:
            raise CredentialError("User already registered", code="user_already_exists")
        self.accounts[email] = {
            'password': password,
            'user': SessionUser(id=f"id-{email}", email=email, metadata=dict(metadata)),
        }

    def sign_out(self):
        self.storage.clear()
        self._notifier.notify(None)
        if self.sign_out_error is not None:
            raise self.sign_out_error

    def get_session(self):
        email = self.storage.get('email')
        account = self.accounts.get(email) if email else None
        if account is None:
            return None
        session = self._session_for(account['user'])
        if self.rotate_on_get:
            # Behave like a provider that refreshes the token while reading it
            self._notifier.notify(session)
        return session

    def on_session_change(self, callback):
        return self._notifier.subscribe(callback)

    @property
    def listener_count(self) -> int:
        return len(self._notifier)


class FakeProfileStore(ProfileStore):
    """In-memory profiles table with optional per-user blocking and failures."""

    def __init__(self, profiles: Optional[Dict[str, Dict[str, Any]]] = None):
        self.profiles: Dict[str, Dict[str, Any]] = dict(profiles or {})
        self.gates: Dict[str, threading.Event] = {}
        self.entered: Dict[str, threading.Event] = {}
        self.fail_with: Optional[Exception] = None
        self.calls: List[str] = []

    def add(self, user_id: str, email: str, name: str, role: Any, created_at: Optional[str] = None):
        self.profiles[user_id] = {
            'id': user_id,
            'email': email,
            'name': name,
            'role': role,
            'created_at': created_at,
        }

    def block(self, user_id: str) -> threading.Event:
        """Make lookups for user_id wait until the returned event is set."""
        self.gates[user_id] = threading.Event()
        self.entered[user_id] = threading.Event()
        return self.gates[user_id]

    def get_profile(self, user_id, timeout=None):
        self.calls.append(user_id)
        if user_id in self.gates:
            self.entered[user_id].set()
            self.gates[user_id].wait(5)
        if self.fail_with is not None:
            raise self.fail_with
        profile = self.profiles.get(user_id)
        return dict(profile) if profile else None

    def list_profiles(self):
        return sorted(
            (dict(p) for p in self.profiles.values()),
            key=lambda p: p.get('created_at') or '',
            reverse=True,
        )

    def update_role(self, user_id, role):
        if user_id not in self.profiles:
            raise ProfileStoreError(f"No profile found for user {user_id}")
        self.profiles[user_id]['role'] = role
        return dict(self.profiles[user_id])

    def delete_user(self, user_id):
        if self.profiles.pop(user_id, None) is None:
            raise ProfileStoreError(f"No profile found for user {user_id}")


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture(autouse=True)
def fresh_registry():
    """Rebuild the policy registry for every test."""
    reset_registry()
    yield
    reset_registry()


@pytest.fixture
def provider():
    return FakeCredentialProvider()


@pytest.fixture
def profile_store():
    store = FakeProfileStore()
    store.add('u-admin', 'admin@sambright.com', 'Ada Admin', 'super_admin', '2024-03-01T00:00:00')
    store.add('u-prod', 'prod@sambright.com', 'Pat Production', 'production', '2024-02-01T00:00:00')
    store.add('u-field', 'field@sambright.com', 'Fran Field', 'field', '2024-01-15T00:00:00')
    store.add('u-cs', 'cs@sambright.com', 'Cary Service', 'customer_service', '2024-01-10T00:00:00')
    store.add('u-client', 'client@example.com', 'Cleo Client', 'client', '2024-01-01T00:00:00')
    return store


@pytest.fixture
def accounts(provider):
    """Credential accounts matching the profile_store fixture."""
    provider.add_account('admin@sambright.com', 'secret1', 'u-admin', 'Ada Admin')
    provider.add_account('prod@sambright.com', 'secret1', 'u-prod', 'Pat Production')
    provider.add_account('field@sambright.com', 'secret1', 'u-field', 'Fran Field')
    provider.add_account('cs@sambright.com', 'secret1', 'u-cs', 'Cary Service')
    provider.add_account('client@example.com', 'secret1', 'u-client', 'Cleo Client')
    return provider
