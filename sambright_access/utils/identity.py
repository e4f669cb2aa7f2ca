"""
Identity resolution - session user -> Principal.

Profile lookups go over the network and may be slow or fail. Resolution
never blocks past its timeout and never raises: on any failure the user
gets a least-privileged Principal built from the session data that is
already at hand. Under-privilege on failure, never over-privilege.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sambright_access.utils.auth_providers import ProfileStore, SessionUser
from sambright_access.utils.logging import get_logger
from sambright_access.utils.rbac.audit import log_role_assignment
from sambright_access.utils.rbac.role_enum import LEAST_PRIVILEGED_ROLE, Role

logger = get_logger(__name__)

DEFAULT_PROFILE_TIMEOUT = 10.0
DEFAULT_DISPLAY_NAME = "User"


@dataclass(frozen=True)
class Principal:
    """The resolved identity of the current actor."""

    id: str
    display_name: str
    email: str
    role: Role

    def to_dict(self) -> Dict[str, str]:
        return {
            "id": self.id,
            "name": self.display_name,
            "email": self.email,
            "role": self.role.value,
        }


def coerce_role(value: Any) -> Role:
    """
    Validate an untrusted role value against the Role enum.

    Anything that is not exactly one of the recognised roles becomes the
    least-privileged role.
    """
    if isinstance(value, Role):
        return value
    if isinstance(value, str):
        try:
            return Role(value)
        except ValueError:
            pass
    logger.warning("Unrecognised role %r coerced to '%s'", value, LEAST_PRIVILEGED_ROLE.value)
    return LEAST_PRIVILEGED_ROLE


def _display_name_for(session_user: Optional[SessionUser]) -> str:
    if session_user is None:
        return DEFAULT_DISPLAY_NAME
    name = (session_user.metadata or {}).get("name")
    if isinstance(name, str) and name.strip():
        return name.strip()
    if session_user.email and "@" in session_user.email:
        return session_user.email.split("@", 1)[0]
    return DEFAULT_DISPLAY_NAME


class IdentityResolver:
    """
    Resolve user ids into Principals using the profile store.

    Example:
        >>> resolver = IdentityResolver(SupabaseProfileStore(...), timeout=10.0)
        >>> principal = resolver.resolve_profile(session.user.id, session.user)
    """

    def __init__(self, profile_store: ProfileStore, timeout: float = DEFAULT_PROFILE_TIMEOUT, max_workers: int = 4):
        self._store = profile_store
        self._timeout = timeout
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="profile-resolve")

    @property
    def timeout(self) -> float:
        return self._timeout

    def _fetch_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        future = self._executor.submit(self._store.get_profile, user_id, self._timeout)
        try:
            return future.result(timeout=self._timeout)
        except FutureTimeoutError:
            # Drops the lookup if it is still queued; a running one finishes unobserved
            future.cancel()
            raise

    def resolve_profile(self, user_id: str, session_user: Optional[SessionUser] = None) -> Principal:
        """
        Resolve a user id into a Principal.

        Args:
            user_id: Credential-provider user id
            session_user: Identity data from the session, used for the fallback

        Returns:
            A Principal; never None and never raises
        """
        try:
            try:
                profile = self._fetch_profile(user_id)
            except FutureTimeoutError:
                logger.warning("Profile lookup for %s timed out after %.1fs", user_id, self._timeout)
                return self._fallback(user_id, session_user, reason="timeout")
            except Exception as exc:
                logger.warning("Profile lookup for %s failed: %s", user_id, exc)
                return self._fallback(user_id, session_user, reason="error")

            if not profile:
                logger.info("No profile found for %s", user_id)
                return self._fallback(user_id, session_user, reason="not_found")

            return self._from_profile(user_id, profile, session_user)
        except Exception as exc:
            logger.error("Identity resolution for %s failed unexpectedly: %s", user_id, exc)
            return Principal(id=user_id, display_name=DEFAULT_DISPLAY_NAME, email="", role=LEAST_PRIVILEGED_ROLE)

    def _from_profile(self, user_id: str, profile: Dict[str, Any], session_user: Optional[SessionUser]) -> Principal:
        raw_role = profile.get("role")
        role = coerce_role(raw_role)
        email = profile.get("email") or (session_user.email if session_user else "") or ""
        name = profile.get("name") or _display_name_for(session_user)

        is_default = role.value != raw_role
        log_role_assignment(
            user=email or user_id,
            role=role.value,
            source="profile",
            is_default=is_default,
            reason="invalid_role" if is_default else None,
        )
        return Principal(id=str(profile.get("id") or user_id), display_name=str(name), email=str(email), role=role)

    def _fallback(self, user_id: str, session_user: Optional[SessionUser], reason: str) -> Principal:
        email = session_user.email if session_user and session_user.email else ""
        principal = Principal(
            id=user_id,
            display_name=_display_name_for(session_user),
            email=email,
            role=LEAST_PRIVILEGED_ROLE,
        )
        log_role_assignment(
            user=email or user_id,
            role=principal.role.value,
            source="fallback",
            is_default=True,
            reason=reason,
        )
        return principal

    def shutdown(self, wait: bool = False) -> None:
        self._executor.shutdown(wait=wait)
