"""
Navigation listing and filtering.

The sidebar only lists areas the current role may open, so denied areas
are not discoverable through the UI. This does not replace the gate or
storage-level enforcement.
"""

from dataclasses import dataclass
from typing import List, Optional, Union

from sambright_access.utils.rbac.permissions import can_access
from sambright_access.utils.rbac.role_enum import Resource, Role


@dataclass(frozen=True)
class NavItem:
    id: Resource
    label: str
    highlight: bool = False

    @property
    def path(self) -> str:
        return f"/{self.id.value}"

    def to_dict(self) -> dict:
        return {
            'id': self.id.value,
            'label': self.label,
            'path': self.path,
            'highlight': self.highlight,
        }


NAV_ITEMS: List[NavItem] = [
    NavItem(Resource.DASHBOARD, 'Dashboard'),
    NavItem(Resource.PRODUCTS, 'Products'),
    NavItem(Resource.CLIENTS, 'Clients'),
    NavItem(Resource.PROJECTS, 'Projects'),
    NavItem(Resource.SUPPLIERS, 'Suppliers'),
    NavItem(Resource.ORDERS, 'Orders'),
    NavItem(Resource.INVENTORY, 'Inventory'),
    NavItem(Resource.AI_ADVISOR, 'AI Advisor', highlight=True),
    NavItem(Resource.REPORTS, 'Reports'),
    NavItem(Resource.USERS, 'User Management'),
]


def filter_navigation(
    role: Union[Role, str, None],
    items: Optional[List[NavItem]] = None,
) -> List[NavItem]:
    """Keep only the navigation items the role may open, preserving order."""
    source = NAV_ITEMS if items is None else items
    return [item for item in source if can_access(role, item.path)]


def is_active(item: NavItem, active_path: str) -> bool:
    """Match an item against the current path; '/' and '' mean the dashboard."""
    if active_path in ('', '/'):
        return item.id is Resource.DASHBOARD
    return active_path.lstrip('/') == item.id.value
