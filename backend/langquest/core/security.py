"""
Security utilities for LangQuest.

Identity is owned by an external provider; this module only issues and
verifies the bearer tokens that carry the provider's identity claims.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from jose import JWTError, jwt

from .config import settings


@dataclass(frozen=True)
class Identity:
    """The identity provider's view of the current user."""
    user_id: str
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None


def create_access_token(
    subject: str,
    expires_delta: Optional[timedelta] = None,
    additional_claims: Optional[Dict[str, Any]] = None
) -> str:
    """
    Create a JWT access token.

    Args:
        subject: The subject of the token (the provider's user id)
        expires_delta: Optional custom expiration time
        additional_claims: Optional additional claims such as ``name`` and ``picture``

    Returns:
        str: The encoded JWT token
    """
    now = datetime.now(timezone.utc)
    if expires_delta:
        expire = now + expires_delta
    else:
        expire = now + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode: Dict[str, Any] = {"exp": expire, "iat": now, "sub": subject}

    # Add additional claims if provided
    if additional_claims:
        to_encode.update(additional_claims)

    return jwt.encode(
        to_encode,
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM
    )


def verify_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Verify and decode a JWT token.

    Args:
        token: The JWT token to verify

    Returns:
        Optional[Dict[str, Any]]: The decoded token payload if valid, None otherwise
    """
    try:
        payload = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM]
        )
        return payload
    except JWTError:
        return None


def identity_from_token(token: str) -> Optional[Identity]:
    """Resolve the identity carried by a token, or None if it is unusable."""
    payload = verify_token(token)
    if payload is None:
        return None

    user_id = payload.get("sub")
    if not user_id:
        return None

    return Identity(
        user_id=str(user_id),
        display_name=payload.get("name"),
        avatar_url=payload.get("picture"),
    )
