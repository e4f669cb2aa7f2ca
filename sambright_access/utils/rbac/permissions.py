"""
RBAC Permissions - Access decision engine

Turns (role, requested path) into an allow/deny decision using the policy
registry. Decisions only read the immutable policy table and write nothing,
so they can be evaluated on every render.
"""

from typing import List, Optional, Union

from sambright_access.utils.rbac.registry import get_registry
from sambright_access.utils.rbac.role_enum import Resource, Role

ROOT_RESOURCE = Resource.DASHBOARD.value


def normalize_resource_path(path: Optional[str]) -> str:
    """
    Normalize a route path into a resource identifier.

    Strips a single leading '/'; the root path maps to the dashboard.
    Nothing else is rewritten, so malformed paths stay malformed and are
    denied by the membership test.

    Examples:
        '/products' -> 'products'
        '/'         -> 'dashboard'
        ''          -> 'dashboard'
        '//users'   -> '/users'
    """
    if path is None:
        path = ''
    path = str(getattr(path, 'value', path))
    normalized = path[1:] if path.startswith('/') else path
    return normalized or ROOT_RESOURCE


def can_access(role: Union[Role, str, None], resource_path: Union[Resource, str, None]) -> bool:
    """
    Check if a role may open the resource behind a path.

    Args:
        role: The principal's role; None for an unauthenticated actor
        resource_path: Route path or resource id (e.g. '/products', 'orders')

    Returns:
        True if the normalized resource is in the role's allow-list,
        False otherwise (including unknown roles and resources)
    """
    if not role:
        return False

    target = normalize_resource_path(resource_path)

    allowed = get_registry().lookup(role)
    if allowed is None:
        return False

    return any(resource.value == target for resource in allowed)


def get_permitted_resources(role: Union[Role, str, None]) -> List[Resource]:
    """
    Get every resource a role may open, in Resource declaration order.

    Returns an empty list for absent or unknown roles.
    """
    if not role:
        return []
    allowed = get_registry().lookup(role)
    if allowed is None:
        return []
    return [resource for resource in Resource if resource in allowed]
