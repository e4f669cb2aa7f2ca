"""
Route/View Gate - the single enforcement point for protected views.

ViewGate is framework-agnostic: given the current session snapshot and the
requested path it returns a GateDecision, and the caller renders the view,
the uniform access-denied state, a loading state, the login page or the
client portal accordingly. The Flask decorators in decorators.py are thin
wrappers around it.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, TypeVar

from sambright_access.utils.identity import Principal
from sambright_access.utils.rbac.audit import log_access_decision
from sambright_access.utils.rbac.permissions import can_access, normalize_resource_path
from sambright_access.utils.rbac.role_enum import Role
from sambright_access.utils.session_manager import SessionSnapshot

T = TypeVar('T')

ACCESS_DENIED_TITLE = "Access Denied"
ACCESS_DENIED_MESSAGE = "You don't have permission to access this page."

MAIN_AREA = 'main'
PORTAL_AREA = 'portal'


class GateOutcome(str, Enum):
    LOADING = 'loading'
    UNAUTHENTICATED = 'unauthenticated'
    PORTAL = 'portal'
    DENIED = 'denied'
    ALLOWED = 'allowed'


@dataclass(frozen=True)
class GateDecision:
    outcome: GateOutcome
    resource: str
    principal: Optional[Principal] = None

    @property
    def allowed(self) -> bool:
        return self.outcome is GateOutcome.ALLOWED


def route_for_principal(principal: Optional[Principal]) -> Optional[str]:
    """
    Decide which application area a principal belongs in.

    Clients are sent to the self-service portal instead of the general
    resource set. Returns None for anonymous users.
    """
    if principal is None:
        return None
    if principal.role is Role.CLIENT:
        return PORTAL_AREA
    return MAIN_AREA


class ViewGate:
    """
    Evaluate and render gated views.

    Example:
        >>> gate = ViewGate()
        >>> decision = gate.decide(manager.current(), '/products')
        >>> html = gate.render(decision, show_products, show_denied)
    """

    def __init__(self, audit: bool = True):
        self._audit = audit

    def decide(self, snapshot: SessionSnapshot, resource_path: str, endpoint: Optional[str] = None) -> GateDecision:
        resource = normalize_resource_path(resource_path)

        if snapshot.is_loading:
            return GateDecision(GateOutcome.LOADING, resource)

        principal = snapshot.principal if snapshot.is_authenticated else None
        if principal is None:
            decision = GateDecision(GateOutcome.UNAUTHENTICATED, resource)
        elif route_for_principal(principal) == PORTAL_AREA:
            decision = GateDecision(GateOutcome.PORTAL, resource, principal)
        elif can_access(principal.role, resource):
            decision = GateDecision(GateOutcome.ALLOWED, resource, principal)
        else:
            decision = GateDecision(GateOutcome.DENIED, resource, principal)

        if self._audit:
            log_access_decision(
                user=(principal.email or principal.id) if principal else 'anonymous',
                resource=resource,
                granted=decision.allowed,
                endpoint=endpoint,
                role=principal.role.value if principal else None,
                outcome=decision.outcome.name,
            )
        return decision

    @staticmethod
    def render(
        decision: GateDecision,
        on_allowed: Callable[[], T],
        on_denied: Callable[[], T],
        on_loading: Optional[Callable[[], T]] = None,
        on_unauthenticated: Optional[Callable[[], T]] = None,
        on_portal: Optional[Callable[[], T]] = None,
    ) -> T:
        """
        Render exactly one branch for a decision.

        The protected view is rendered only for ALLOWED; any outcome without
        a dedicated handler falls back to the denied renderer, so nothing of
        the protected view leaks.
        """
        handlers = {
            GateOutcome.ALLOWED: on_allowed,
            GateOutcome.LOADING: on_loading,
            GateOutcome.UNAUTHENTICATED: on_unauthenticated,
            GateOutcome.PORTAL: on_portal,
        }
        handler = handlers.get(decision.outcome)
        return (handler or on_denied)()
