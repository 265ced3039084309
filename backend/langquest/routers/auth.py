"""
Authentication dependencies for LangQuest.

Users sign in with an external identity provider; requests carry the
provider's identity as a bearer token. These dependencies resolve the
current identity for the routers.
"""

from typing import Optional
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from langquest.core.security import Identity, identity_from_token


# Bearer scheme; missing credentials are handled below rather than by FastAPI
bearer_scheme = HTTPBearer(auto_error=False)


def get_current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)
) -> Identity:
    """
    Get the current user's identity from the bearer token.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="User not authenticated",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if credentials is None:
        raise credentials_exception

    identity = identity_from_token(credentials.credentials)
    if identity is None:
        raise credentials_exception

    return identity


def get_current_user_id(identity: Identity = Depends(get_current_identity)) -> str:
    return identity.user_id
