"""API dependencies - authentication and authorization"""

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from typing import Optional

from kore.config import settings
from kore.core.database import get_db
from kore.core.exceptions import AuthenticationError, AuthorizationError
from kore.core.security import token_issuer
from kore.models.user import User
from kore.services.user_service import user_service

# Bearer header is optional: browsers send the access token as a cookie
security = HTTPBearer(auto_error=False)


def get_client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _access_token_from(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    if credentials and credentials.credentials:
        return credentials.credentials
    return request.cookies.get(settings.ACCESS_COOKIE_NAME)


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """
    Get current authenticated user from the access token

    Args:
        request: Incoming request (cookie source)
        credentials: HTTP Bearer credentials
        db: Database session

    Returns:
        Current user

    Raises:
        AuthenticationError: If token is missing/invalid or user not found
        AuthorizationError: If the account is locked
    """
    token = _access_token_from(request, credentials)
    if not token:
        raise AuthenticationError("Access token not found")

    payload = token_issuer.decode_access_token(token)
    if not payload:
        raise AuthenticationError("Invalid or expired access token")

    # A user deleted after issuance is reported as unauthenticated
    user = user_service.get_user_by_id(db, int(payload["sub"]))
    if not user:
        raise AuthenticationError("User not found")

    if user.is_locked():
        raise AuthorizationError("Account is temporarily locked")

    return user


def get_current_admin_user(
    current_user: User = Depends(get_current_user)
) -> User:
    """
    Get current admin user (authorization check)

    Raises:
        AuthorizationError: If user is not admin
    """
    if current_user.role != "admin":
        raise AuthorizationError("Admin access required")
    return current_user
