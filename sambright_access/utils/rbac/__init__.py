"""
RBAC (Role-Based Access Control) Module for Sambright

This module provides the access-control core:
- Role and resource enums
- The static role -> resource policy table
- The pure access decision function
- Navigation filtering
- Audit logging for security events

The view gate (gate.py) and the Flask decorators (decorators.py) depend on
the session layer and are imported from their modules directly.

Usage:
    from sambright_access.utils.rbac import can_access, Resource, Role

    if can_access(Role.PRODUCTION, '/inventory'):
        ...
"""

from sambright_access.utils.rbac.role_enum import Resource, Role, LEAST_PRIVILEGED_ROLE
from sambright_access.utils.rbac.registry import (
    PolicyConfigError,
    PolicyRegistry,
    ROLE_POLICY,
    get_registry,
    reset_registry,
)
from sambright_access.utils.rbac.permissions import (
    can_access,
    get_permitted_resources,
    normalize_resource_path,
)
from sambright_access.utils.rbac.navigation import NAV_ITEMS, NavItem, filter_navigation

__all__ = [
    # Enums
    'Resource',
    'Role',
    'LEAST_PRIVILEGED_ROLE',
    # Registry
    'PolicyConfigError',
    'PolicyRegistry',
    'ROLE_POLICY',
    'get_registry',
    'reset_registry',
    # Decisions
    'can_access',
    'get_permitted_resources',
    'normalize_resource_path',
    # Navigation
    'NAV_ITEMS',
    'NavItem',
    'filter_navigation',
]
