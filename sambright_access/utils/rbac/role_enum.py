"""
RBAC enums - authoritative list of roles and application resources.

Both are str-valued enums, so members compare equal to their string values
and can be used anywhere a plain string is expected (templates, JSON,
database columns) without calling .value.

Usage:
    from sambright_access.utils.rbac.role_enum import Resource, Role

    @require_resource(Resource.PRODUCTS)
    def products(): ...

    if can_access(Role.FIELD, Resource.PROJECTS):
        ...
"""

from enum import Enum


class Role(str, Enum):
    """Roles an administrator can assign to a user profile."""

    SUPER_ADMIN = "super_admin"
    PRODUCTION = "production"
    FIELD = "field"
    CUSTOMER_SERVICE = "customer_service"
    CLIENT = "client"


class Resource(str, Enum):
    """Navigable areas of the application; the unit of access control."""

    DASHBOARD = "dashboard"
    PRODUCTS = "products"
    CLIENTS = "clients"
    PROJECTS = "projects"
    SUPPLIERS = "suppliers"
    ORDERS = "orders"
    INVENTORY = "inventory"
    AI_ADVISOR = "ai-advisor"
    REPORTS = "reports"
    USERS = "users"


# Least-privileged role; used whenever a stored role cannot be trusted
LEAST_PRIVILEGED_ROLE = Role.CLIENT
