from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from typing import Annotated
from .settings import config_settings

# 1. Define the scheme (This tells FastAPI where to look for the token)
# "/api/v1/auth/token" is where clients would request a token if the API
# supported username/password login; tokens are provisioned out of band.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/token")


def require_auth_token(token: Annotated[str, Depends(oauth2_scheme)]) -> str:
    """
    Dependency function that requires a Bearer token listed in TOKENS.

    If no token is provided, OAuth2PasswordBearer automatically raises
    a 401 Unauthorized exception.
    """
    if not token or token not in config_settings.TOKENS:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return token


def require_admin_token(token: Annotated[str, Depends(require_auth_token)]) -> str:
    """Dependency for operator routes: the token must also be in ADMIN_TOKENS."""
    if token not in config_settings.ADMIN_TOKENS:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required",
        )

    return token
