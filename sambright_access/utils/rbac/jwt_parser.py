"""
JWT Parser - Read identity claims from credential-provider access tokens

Supabase (GoTrue) access tokens carry the user id in 'sub', the email in
'email' and sign-up metadata in 'user_metadata'. Roles are NOT read from
the token: the profile store is the only authority for a user's role.
"""

import time
from typing import Any, Dict, Optional

import jwt

from sambright_access.utils.auth_providers import SessionUser
from sambright_access.utils.logging import get_logger

logger = get_logger(__name__)

SUPABASE_AUDIENCE = 'authenticated'


def decode_token(
    token_string: str,
    secret: Optional[str] = None,
    audience: Optional[str] = SUPABASE_AUDIENCE,
) -> Dict[str, Any]:
    """
    Decode an access token.

    Args:
        token_string: Encoded JWT
        secret: HS256 signing secret. When given the signature, expiry and
                audience are verified; otherwise claims are read unverified
                (only for data the provider already vouched for).
        audience: Expected 'aud' claim when verifying

    Returns:
        Decoded claims dictionary, or {} if the token is invalid
    """
    try:
        if secret:
            return jwt.decode(
                token_string,
                secret,
                algorithms=['HS256'],
                audience=audience,
            )
        return jwt.decode(
            token_string,
            options={'verify_signature': False, 'verify_aud': False, 'verify_exp': False},
        )
    except jwt.ExpiredSignatureError:
        logger.warning("JWT token has expired")
        return {}
    except jwt.InvalidTokenError as e:
        logger.error(f"Failed to decode JWT: {e}")
        return {}


def is_expired(claims: Dict[str, Any], leeway: int = 0) -> bool:
    """Check the 'exp' claim; tokens without one are treated as expired."""
    exp = claims.get('exp')
    if not isinstance(exp, (int, float)):
        return True
    return exp <= time.time() + leeway


def session_user_from_claims(claims: Dict[str, Any]) -> Optional[SessionUser]:
    """
    Build a SessionUser from token claims.

    Returns None when the claims have no subject.
    """
    subject = claims.get('sub')
    if not subject:
        return None

    metadata = claims.get('user_metadata') or {}
    if not isinstance(metadata, dict):
        logger.warning(f"user_metadata claim is not a dict: {type(metadata)}")
        metadata = {}

    return SessionUser(
        id=str(subject),
        email=str(claims.get('email') or ''),
        metadata=dict(metadata),
    )
