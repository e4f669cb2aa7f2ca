"""
RBAC Audit Logging - Security event logging for access control

This module provides audit logging for gate decisions, role assignments
and authentication events, supporting security analysis and compliance
requirements. Passwords and tokens are never written here.
"""

import json
from datetime import datetime, timezone
from typing import Optional

from sambright_access.utils.logging import get_logger

# Dedicated audit logger
audit_logger = get_logger('rbac.audit')


def log_access_decision(
    user: str,
    resource: str,
    granted: bool,
    endpoint: Optional[str],
    role: Optional[str],
    outcome: Optional[str] = None,
    extra: Optional[dict] = None
) -> None:
    """
    Log a gate decision for the audit trail.

    Args:
        user: Email of the user (or 'anonymous')
        resource: Normalized resource id that was requested
        granted: Whether the view was rendered
        endpoint: Flask endpoint name, if any
        role: User's current role
        outcome: Gate outcome name (e.g. 'DENIED', 'PORTAL')
        extra: Additional context information
    """
    timestamp = datetime.now(timezone.utc).isoformat()
    result = 'GRANTED' if granted else 'DENIED'

    log_entry = {
        'timestamp': timestamp,
        'user': user,
        'resource': resource,
        'result': result,
        'endpoint': endpoint,
        'role': role,
    }
    if outcome:
        log_entry['outcome'] = outcome
    if extra:
        log_entry.update(extra)

    log_message = f"{user} | {resource} | {result} | {endpoint} | role: {role}"

    if granted:
        audit_logger.debug(log_message)
    else:
        audit_logger.warning(log_message)
        audit_logger.info(f"AUDIT: {json.dumps(log_entry)}")


def log_role_assignment(
    user: str,
    role: str,
    source: str,
    is_default: bool = False,
    reason: Optional[str] = None
) -> None:
    """
    Log a role assignment event.

    Args:
        user: User id or email
        role: Role assigned to the principal
        source: Source of the role ('profile', 'fallback', 'admin')
        is_default: Whether the least-privileged default was assigned
        reason: Why the default was used (timeout, not found, invalid role)
    """
    timestamp = datetime.now(timezone.utc).isoformat()

    log_entry = {
        'timestamp': timestamp,
        'event': 'role_assignment',
        'user': user,
        'role': role,
        'source': source,
        'is_default': is_default,
    }
    if reason:
        log_entry['reason'] = reason

    if is_default:
        audit_logger.warning(
            f"Default role assigned to {user}: {role} ({reason or 'no profile role'})"
        )
    else:
        audit_logger.info(f"Role assigned to {user}: {role} (source: {source})")

    audit_logger.debug(f"AUDIT: {json.dumps(log_entry)}")


def log_authentication_event(
    user: str,
    event_type: str,
    success: bool,
    method: str = 'password',
    details: Optional[str] = None
) -> None:
    """
    Log an authentication event.

    Args:
        user: Email (or 'unknown')
        event_type: Type of event ('sign_in', 'sign_up', 'sign_out', 'token_refresh')
        success: Whether the event succeeded
        method: Authentication method
        details: Additional details or error message
    """
    timestamp = datetime.now(timezone.utc).isoformat()
    result = 'SUCCESS' if success else 'FAILURE'

    log_entry = {
        'timestamp': timestamp,
        'event': event_type,
        'user': user,
        'result': result,
        'method': method,
    }
    if details:
        log_entry['details'] = details

    log_message = f"AUTH | {event_type} | {user} | {result} | method: {method}"
    if details:
        log_message += f" | {details}"

    if success:
        audit_logger.info(log_message)
    else:
        audit_logger.warning(log_message)

    audit_logger.debug(f"AUDIT: {json.dumps(log_entry)}")
