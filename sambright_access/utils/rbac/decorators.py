"""
RBAC Decorators - Route protection decorators for Flask endpoints

This module wraps the ViewGate for Flask views. Decorators read the current
session snapshot from the application's session provider, evaluate the
gate, and either call the view or return the matching denial response.
Every decision is written to the audit log by the gate.

The application registers its session provider under
app.extensions['sambright_access']; it must expose current_snapshot().
"""

from functools import wraps
from typing import Callable, Union

from flask import current_app, jsonify, redirect, render_template, request, url_for

from sambright_access.utils.logging import get_logger
from sambright_access.utils.rbac.audit import log_access_decision
from sambright_access.utils.rbac.gate import (
    ACCESS_DENIED_MESSAGE,
    ACCESS_DENIED_TITLE,
    GateOutcome,
    ViewGate,
)
from sambright_access.utils.rbac.role_enum import Resource
from sambright_access.utils.session_manager import SessionSnapshot, SessionState

logger = get_logger(__name__)

EXTENSION_KEY = 'sambright_access'

_gate = ViewGate()


def get_current_snapshot() -> SessionSnapshot:
    """
    Get the session snapshot for the current request.

    Returns an ANONYMOUS snapshot when no session provider is registered.
    """
    provider = current_app.extensions.get(EXTENSION_KEY)
    if provider is None:
        logger.warning("No session provider registered; treating request as anonymous")
        return SessionSnapshot(state=SessionState.ANONYMOUS)
    return provider.current_snapshot()


def is_api_request() -> bool:
    return request.is_json or request.path.startswith('/api/')


def _loading_response():
    if is_api_request():
        return jsonify({
            'error': 'Session loading',
            'message': 'Your session is still being resolved, please retry',
            'status': 503
        }), 503
    return render_template('loading.html'), 503


def _unauthenticated_response():
    if is_api_request():
        return jsonify({
            'error': 'Authentication required',
            'message': 'Please log in to access this resource',
            'status': 401
        }), 401
    return redirect(url_for('login'))


def access_denied_response():
    """Uniform denial: says nothing about the resource that was denied."""
    if is_api_request():
        return jsonify({
            'error': ACCESS_DENIED_TITLE,
            'message': ACCESS_DENIED_MESSAGE,
            'status': 403
        }), 403
    return render_template('access_denied.html',
        error_title=ACCESS_DENIED_TITLE,
        error_message=ACCESS_DENIED_MESSAGE,
    ), 403


def require_authenticated(f: Callable) -> Callable:
    """
    Decorator that requires a resolved session.

    Does NOT check the policy table, only that a principal exists.
    Use this for routes every signed-in user may open (profile, sign-out).

    Usage:
        @app.route('/auth/user')
        @require_authenticated
        def current_user():
            ...
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        snapshot = get_current_snapshot()
        if snapshot.is_loading:
            return _loading_response()
        if not snapshot.is_authenticated:
            log_access_decision(
                user='anonymous',
                resource='authenticated',
                granted=False,
                endpoint=request.endpoint,
                role=None
            )
            return _unauthenticated_response()
        return f(*args, **kwargs)

    return decorated_function


def require_resource(resource: Union[Resource, str]) -> Callable:
    """
    Decorator that gates a view behind a resource of the policy table.

    Clients are redirected to the self-service portal before the policy is
    consulted. Denied users get the uniform access-denied page (403), API
    callers get a 401/403 JSON body.

    Usage:
        @app.route('/products')
        @require_resource(Resource.PRODUCTS)
        def products():
            ...
    """
    resource_path = getattr(resource, 'value', resource)

    def decorator(f: Callable) -> Callable:
        @wraps(f)
        def decorated_function(*args, **kwargs):
            decision = _gate.decide(get_current_snapshot(), resource_path, endpoint=request.endpoint)

            if decision.outcome is GateOutcome.ALLOWED:
                return f(*args, **kwargs)
            if decision.outcome is GateOutcome.LOADING:
                return _loading_response()
            if decision.outcome is GateOutcome.UNAUTHENTICATED:
                return _unauthenticated_response()
            if decision.outcome is GateOutcome.PORTAL and not is_api_request():
                return redirect(url_for('portal'))
            return access_denied_response()

        return decorated_function

    return decorator
