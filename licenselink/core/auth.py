"""
Session tokens for the SPA.

Issues and verifies short-lived HS256 JWTs signed with SESSION_SECRET.
Tokens are never stored server-side: expiry is the only invalidation.
"""
import logging
import time
from typing import Optional, Tuple

import jwt
from fastapi import Header, Request

from licenselink.core.config import Settings
from licenselink.core.errors import AuthError, InternalError
from licenselink.models.accounts import SessionClaims

logger = logging.getLogger("licenselink")

ALGORITHM = "HS256"


def _secret(settings: Settings) -> str:
    if not settings.SESSION_SECRET:
        raise InternalError("SESSION_SECRET not configured")
    return settings.SESSION_SECRET


def issue_session_token(
    settings: Settings,
    *,
    subject: str,
    email: Optional[str] = None,
    license_account_id: Optional[str] = None,
    license_token: Optional[str] = None,
    now: Optional[int] = None,
) -> Tuple[str, int]:
    """
    Sign a session token for an authenticated auth account.

    Args:
        settings: Application settings (SESSION_SECRET, SESSION_TTL_SECONDS)
        subject: Supabase auth account id
        email: Account email
        license_account_id: Keygen user id, if known
        license_token: Keygen bearer token for the user
        now: Issue time override (epoch seconds), for tests

    Returns:
        (token, expires_at epoch seconds)
    """
    issued_at = int(now if now is not None else time.time())
    expires_at = issued_at + settings.SESSION_TTL_SECONDS
    claims = {
        "sub": subject,
        "email": email,
        "license_account_id": license_account_id,
        "license_token": license_token,
        "iat": issued_at,
        "exp": expires_at,
    }
    token = jwt.encode(claims, _secret(settings), algorithm=ALGORITHM)
    return token, expires_at


def verify_session_token(settings: Settings, token: Optional[str]) -> SessionClaims:
    """
    Verify a session token and return its claims.

    Raises:
        AuthError 401: Token missing or malformed
        AuthError 403: Signature mismatch or token expired
    """
    if not token:
        raise AuthError("Missing session token")

    try:
        payload = jwt.decode(
            token,
            _secret(settings),
            algorithms=[ALGORITHM],
            options={"require": ["sub", "exp", "iat"]},
        )
    except jwt.ExpiredSignatureError:
        raise AuthError("Session expired", code="session_expired", status_code=403)
    except jwt.InvalidSignatureError:
        raise AuthError("Invalid session signature", code="invalid_session", status_code=403)
    except jwt.InvalidTokenError as e:
        logger.debug(f"Invalid session token: {e}")
        raise AuthError("Invalid session token")

    return SessionClaims(**payload)


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extract the token from an `Authorization: Bearer <token>` header."""
    if not authorization:
        return None
    scheme, _, value = authorization.partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()


async def get_session_claims(
    request: Request,
    authorization: Optional[str] = Header(None),
) -> SessionClaims:
    """FastAPI dependency: resolve the caller's session from the bearer token."""
    settings: Settings = request.app.state.settings
    claims = verify_session_token(settings, bearer_token(authorization))
    request.state.user_id = claims.sub
    return claims
