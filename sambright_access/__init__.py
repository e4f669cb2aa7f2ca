"""
Sambright access-control core.

Role-based access control for the Sambright inventory/CRM application:
the role policy table, the access decision engine, session-to-identity
resolution and the route/view gate consumed by the web interface.
"""

__version__ = "0.3.0"
