"""Authentication module using signed bearer tokens.

Users sign in elsewhere; this service only verifies the JWT they present.
The token's ``sub`` claim carries the user id. This module provides:
1. Token creation and verification (HS256 by default)
2. A FastAPI dependency resolving the caller's user id
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError, jwt

from config import settings_conf

# Configure logging
logger = logging.getLogger(__name__)

# Constants
TOKEN_EXPIRY_HOURS = 24

class AuthError(Exception):
    """Base exception for authentication errors."""
    pass

class SessionExpiredError(AuthError):
    """Raised when a token has expired."""
    pass

class InvalidTokenError(AuthError):
    """Raised when a token cannot be verified or lacks a valid subject."""
    pass

def create_access_token(
    user_id: uuid.UUID,
    expires_in: timedelta = timedelta(hours=TOKEN_EXPIRY_HOURS),
    claims: Optional[Dict[str, Any]] = None,
    secret: Optional[str] = None,
    algorithm: Optional[str] = None
) -> str:
    """Create a signed token for a user.

    Args:
        user_id: The user the token identifies
        expires_in: Lifetime of the token
        claims: Optional extra claims
        secret: Signing key, defaults to the configured jwt_secret
        algorithm: Signing algorithm, defaults to the configured jwt_algorithm

    Returns:
        The encoded JWT
    """
    now = datetime.now(timezone.utc)
    payload = {
        **(claims or {}),
        'sub': str(user_id),
        'iat': now,
        'exp': now + expires_in
    }
    return jwt.encode(
        payload,
        secret or settings_conf['jwt_secret'],
        algorithm=algorithm or settings_conf['jwt_algorithm']
    )

def decode_token(
    token: str,
    secret: Optional[str] = None,
    algorithm: Optional[str] = None
) -> uuid.UUID:
    """Verify a token and return its user id.

    Raises:
        SessionExpiredError: If the token has expired
        InvalidTokenError: If the signature or subject is invalid
    """
    try:
        payload = jwt.decode(
            token,
            secret or settings_conf['jwt_secret'],
            algorithms=[algorithm or settings_conf['jwt_algorithm']]
        )
    except ExpiredSignatureError:
        raise SessionExpiredError("Token has expired")
    except JWTError as e:
        raise InvalidTokenError(f"Invalid token: {e}")

    try:
        return uuid.UUID(str(payload.get('sub')))
    except ValueError:
        raise InvalidTokenError("Token subject is not a user id")

auth_scheme = HTTPBearer(
    scheme_name="Bearer",
    description="JWT whose subject is the user id"
)

async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(auth_scheme)
) -> uuid.UUID:
    """FastAPI dependency for getting the authenticated user id.

    Args:
        credentials: Bearer token credentials

    Returns:
        The authenticated user id

    Raises:
        HTTPException: If authentication fails
    """
    try:
        return decode_token(credentials.credentials)
    except SessionExpiredError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session has expired"
        )
    except AuthError as e:
        logger.debug(f"Rejected token: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e)
        )

# Export public interface
__all__ = [
    'auth_scheme',
    'create_access_token',
    'decode_token',
    'get_current_user',
    'AuthError',
    'InvalidTokenError',
    'SessionExpiredError'
]
