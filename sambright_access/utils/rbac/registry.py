"""
RBAC Registry - Role policy table and role metadata

This module holds the static role-to-resource policy of the application.
The policy is fixed in code (it is not user-editable data): every Role maps
to exactly one allow-list of Resources, and absence from the allow-list
means deny. There is no deny-list and no wildcard.

The table is validated when the registry is built. An unmapped role is a
configuration error and aborts startup rather than surfacing at decision
time.
"""

from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Union

from sambright_access.utils.logging import get_logger
from sambright_access.utils.rbac.role_enum import Resource, Role

logger = get_logger(__name__)

# Global registry instance (singleton pattern)
_registry: Optional['PolicyRegistry'] = None


ROLE_POLICY: Dict[Role, FrozenSet[Resource]] = {
    Role.SUPER_ADMIN: frozenset({
        Resource.DASHBOARD,
        Resource.PRODUCTS,
        Resource.CLIENTS,
        Resource.PROJECTS,
        Resource.SUPPLIERS,
        Resource.ORDERS,
        Resource.INVENTORY,
        Resource.AI_ADVISOR,
        Resource.REPORTS,
        Resource.USERS,
    }),
    Role.PRODUCTION: frozenset({
        Resource.DASHBOARD,
        Resource.PRODUCTS,
        Resource.INVENTORY,
        Resource.SUPPLIERS,
    }),
    Role.FIELD: frozenset({
        Resource.DASHBOARD,
        Resource.PROJECTS,
        Resource.CLIENTS,
    }),
    Role.CUSTOMER_SERVICE: frozenset({
        Resource.DASHBOARD,
        Resource.PROJECTS,
        Resource.ORDERS,
        Resource.CLIENTS,
    }),
    # Clients are routed to the self-service portal before any gate runs;
    # the table only grants them the dashboard.
    Role.CLIENT: frozenset({
        Resource.DASHBOARD,
    }),
}

ROLE_INFO: Dict[Role, Dict[str, str]] = {
    Role.SUPER_ADMIN: {
        'label': 'Super Admin',
        'description': 'Full system access - Can view, edit, and delete everything',
    },
    Role.PRODUCTION: {
        'label': 'Production',
        'description': 'Raw materials only - Can view and edit inventory and suppliers',
    },
    Role.FIELD: {
        'label': 'Field Person',
        'description': 'Projects only - Can view and edit projects and clients',
    },
    Role.CUSTOMER_SERVICE: {
        'label': 'Customer Service',
        'description': 'Invoices only - Can view and manage invoices and orders',
    },
    Role.CLIENT: {
        'label': 'Client',
        'description': 'Customer portal - Limited access to view their own data',
    },
}


class PolicyConfigError(Exception):
    """Raised when the role policy table is invalid."""
    pass


class PolicyRegistry:
    """
    Central registry for role-based access control.

    Manages:
    - The role -> allowed resources table
    - Table validation (every role mapped, only known resources)
    - Role labels and descriptions for display
    """

    def __init__(
        self,
        policy: Optional[Mapping[Role, Iterable[Resource]]] = None,
        role_info: Optional[Mapping[Role, Dict[str, str]]] = None,
    ):
        """
        Initialize the registry.

        Args:
            policy: Role -> resources mapping. Defaults to ROLE_POLICY.
            role_info: Role -> {'label', 'description'}. Defaults to ROLE_INFO.

        Raises:
            PolicyConfigError: If the policy does not cover every Role or
                               references an unknown role or resource.
        """
        source = ROLE_POLICY if policy is None else policy
        self._role_info = dict(ROLE_INFO if role_info is None else role_info)

        self._validate_policy(source)
        self._policy: Dict[Role, FrozenSet[Resource]] = {
            Role(role): frozenset(Resource(r) for r in resources)
            for role, resources in source.items()
        }

        logger.debug(
            "Policy registry initialized: %d roles, %d resources",
            len(self._policy), len(Resource),
        )

    @staticmethod
    def _validate_policy(policy: Mapping[Role, Iterable[Resource]]) -> None:
        known_roles = {role.value for role in Role}
        known_resources = {resource.value for resource in Resource}

        for role in policy:
            if str(getattr(role, 'value', role)) not in known_roles:
                raise PolicyConfigError(f"Policy references undefined role '{role}'")

        mapped = {str(getattr(role, 'value', role)) for role in policy}
        missing = sorted(known_roles - mapped)
        if missing:
            raise PolicyConfigError(f"Roles without a policy entry: {', '.join(missing)}")

        for role, resources in policy.items():
            for resource in resources:
                if str(getattr(resource, 'value', resource)) not in known_resources:
                    raise PolicyConfigError(
                        f"Role '{getattr(role, 'value', role)}' grants undefined resource '{resource}'"
                    )

    def allowed_resources(self, role: Role) -> FrozenSet[Resource]:
        """
        Get the complete allow-list for a role.

        Args:
            role: A Role member

        Returns:
            Frozen set of resources, possibly empty
        """
        return self._policy[role]

    def lookup(self, role: Union[Role, str, None]) -> Optional[FrozenSet[Resource]]:
        """
        Look up the allow-list for an untrusted role value.

        Returns None when the value is not a recognised role.
        """
        if role is None:
            return None
        try:
            return self._policy.get(Role(role))
        except ValueError:
            return None

    def is_valid_role(self, role_name: object) -> bool:
        """Check whether a value names one of the configured roles."""
        return self.lookup(role_name) is not None  # type: ignore[arg-type]

    def get_roles_with_resource(self, resource: Union[Resource, str]) -> List[str]:
        """
        Get all roles that may open a resource.

        Useful for error messages ("You need role X or Y to view this").
        """
        value = getattr(resource, 'value', resource)
        return [
            role.value
            for role, resources in self._policy.items()
            if any(r.value == value for r in resources)
        ]

    def get_role_info(self, role: Union[Role, str]) -> Optional[Dict[str, str]]:
        """
        Get label and description for a role.

        Returns:
            Dict with 'label' and 'description', or None for unknown roles
        """
        try:
            info = self._role_info.get(Role(role))
        except ValueError:
            return None
        return dict(info) if info else None

    def get_role_descriptions(self, roles: Iterable[Union[Role, str]]) -> str:
        """Format roles as 'Label (description), ...', skipping unknown roles."""
        parts = []
        for role in roles:
            info = self.get_role_info(role)
            if info:
                parts.append(f"{info['label']} ({info['description']})")
        return ', '.join(parts)

    @property
    def roles(self) -> List[Role]:
        return list(self._policy)


def get_registry(force_reload: bool = False) -> PolicyRegistry:
    """
    Get the global policy registry instance (singleton).

    Args:
        force_reload: Rebuild the registry from ROLE_POLICY

    Returns:
        PolicyRegistry instance
    """
    global _registry

    if _registry is None or force_reload:
        _registry = PolicyRegistry()

    return _registry


def reset_registry() -> None:
    """
    Reset the global registry (for testing purposes).
    """
    global _registry
    _registry = None


# Fail at import time if the shipped table is incomplete
get_registry()
