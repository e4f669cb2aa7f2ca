"""
UserAdminService - role administration for super admins.

Backs the user-management area: list users, change a user's role, delete a
user. The acting principal must be allowed to open the 'users' resource;
the gate already checks this for the web UI, and the service checks again
so other callers cannot skip it.

A role change takes effect for the affected user on their next identity
resolution; views that are already rendered are not updated.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

from sambright_access.utils.identity import Principal, coerce_role
from sambright_access.utils.logging import get_logger
from sambright_access.utils.rbac.audit import log_role_assignment
from sambright_access.utils.rbac.permissions import can_access
from sambright_access.utils.rbac.role_enum import Resource, Role

logger = get_logger(__name__)


class PermissionDeniedError(Exception):
    """Raised when the acting principal may not administer users."""
    pass


class UserAdminError(Exception):
    """Raised for invalid administration requests."""
    pass


class AdminProfileStore(Protocol):
    def list_profiles(self) -> List[Dict[str, Any]]: ...

    def update_role(self, user_id: str, role: str) -> Dict[str, Any]: ...

    def delete_user(self, user_id: str) -> None: ...


@dataclass(frozen=True)
class UserRecord:
    id: str
    email: str
    name: str
    role: Role
    created_at: Optional[str] = None

    @property
    def initials(self) -> str:
        return ''.join(part[0] for part in self.name.split() if part).upper()[:2]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'email': self.email,
            'name': self.name,
            'role': self.role.value,
            'created_at': self.created_at,
            'initials': self.initials,
        }


def _to_record(profile: Dict[str, Any]) -> UserRecord:
    created_at = profile.get('created_at')
    return UserRecord(
        id=str(profile.get('id', '')),
        email=profile.get('email') or '',
        name=profile.get('name') or 'Unknown',
        role=coerce_role(profile.get('role')),
        created_at=created_at.isoformat() if hasattr(created_at, 'isoformat') else created_at,
    )


class UserAdminService:
    """
    Example:
        >>> service = UserAdminService(profile_store)
        >>> service.list_users(admin, search="ann")
        >>> service.change_role(admin, user_id, Role.FIELD)
    """

    def __init__(self, profile_store: AdminProfileStore):
        self._store = profile_store

    @staticmethod
    def _require_admin(actor: Optional[Principal]) -> Principal:
        if actor is None or not can_access(actor.role, Resource.USERS):
            raise PermissionDeniedError("Only super admins can manage users")
        return actor

    def list_users(self, actor: Optional[Principal], search: str = '') -> List[UserRecord]:
        """List users newest first, optionally filtered by name or email."""
        self._require_admin(actor)
        records = [_to_record(p) for p in self._store.list_profiles()]
        query = search.strip().lower()
        if query:
            records = [r for r in records if query in r.name.lower() or query in r.email.lower()]
        return records

    def change_role(self, actor: Optional[Principal], user_id: str, role: Role | str) -> UserRecord:
        """Assign a new role; the value must be a recognised Role."""
        admin = self._require_admin(actor)
        try:
            new_role = Role(role)
        except ValueError:
            raise UserAdminError(f"Unknown role: {role}")

        updated = _to_record(self._store.update_role(user_id, new_role.value))
        log_role_assignment(
            user=updated.email or user_id,
            role=new_role.value,
            source=f"admin:{admin.email or admin.id}",
        )
        return updated

    def delete_user(self, actor: Optional[Principal], user_id: str) -> None:
        admin = self._require_admin(actor)
        if user_id == admin.id:
            raise UserAdminError("You cannot delete your own account")
        self._store.delete_user(user_id)
        logger.info("User %s deleted by %s", user_id, admin.email or admin.id)
