"""Authentication routes"""

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from typing import Optional

from kore.api.deps import get_client_ip, get_current_user
from kore.config import settings
from kore.core.database import get_db
from kore.core.exceptions import RateLimitExceededError
from kore.models.user import User
from kore.schemas.response import APIResponse, ErrorResponse
from kore.schemas.user import (
    AuthResponse,
    LoginRequest,
    RefreshTokenRequest,
    RegisterRequest,
    TokenResponse,
    UserResponse,
)
from kore.services.auth_service import auth_service
from kore.services.rate_limiter import rate_limiter
from kore.services.token_service import TokenPair

router = APIRouter()


def _enforce_rate_limit(request: Request, scope: str) -> None:
    client_ip = get_client_ip(request)
    windows = (
        (f"{scope}:min:{client_ip}", settings.AUTH_RATE_LIMIT_PER_MINUTE, 60),
        (f"{scope}:hour:{client_ip}", settings.AUTH_RATE_LIMIT_PER_HOUR, 3600),
    )
    for key, limit, window in windows:
        if not rate_limiter.allow(key, limit, window):
            error = RateLimitExceededError("Too many authentication attempts. Please try again later.")
            error.details = {"retry_after": rate_limiter.retry_after(key, window)}
            raise error


def _cookie_domain() -> Optional[str]:
    return settings.COOKIE_DOMAIN or None


def set_auth_cookies(response: Response, tokens: TokenPair) -> None:
    """Store both tokens as httpOnly cookies; the refresh cookie only travels to auth routes"""
    response.set_cookie(
        settings.ACCESS_COOKIE_NAME,
        tokens.access_token,
        max_age=tokens.access_expires_in,
        path="/",
        domain=_cookie_domain(),
        secure=settings.COOKIE_SECURE,
        httponly=True,
        samesite="lax",
    )
    response.set_cookie(
        settings.REFRESH_COOKIE_NAME,
        tokens.refresh_token,
        max_age=tokens.refresh_expires_in,
        path=settings.REFRESH_COOKIE_PATH,
        domain=_cookie_domain(),
        secure=settings.COOKIE_SECURE,
        httponly=True,
        samesite="lax",
    )


def clear_auth_cookies(response: Response) -> None:
    response.delete_cookie(settings.ACCESS_COOKIE_NAME, path="/", domain=_cookie_domain())
    response.delete_cookie(settings.REFRESH_COOKIE_NAME, path=settings.REFRESH_COOKIE_PATH, domain=_cookie_domain())


def _token_response(tokens: TokenPair) -> TokenResponse:
    return TokenResponse(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        expires_in=tokens.access_expires_in,
    )


def _session_rejected(request: Request, message: str) -> JSONResponse:
    response = JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content=ErrorResponse(error=message, path=request.url.path).model_dump(),
    )
    clear_auth_cookies(response)
    return response


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
def register(
    body: RegisterRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db)
):
    """
    Register a new customer account and start a session

    Returns:
        User info and the issued token pair (also set as cookies)
    """
    _enforce_rate_limit(request, "register")

    result = auth_service.register(
        db, body.email, body.password, body.name, ip_address=get_client_ip(request)
    )
    set_auth_cookies(response, result.tokens)

    return AuthResponse(
        message="Registration successful",
        user=UserResponse.model_validate(result.user),
        tokens=_token_response(result.tokens),
    )


@router.post("/login", response_model=AuthResponse, status_code=status.HTTP_200_OK)
def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db)
):
    """
    Login endpoint - authenticate with email and password

    Returns:
        User info and the issued token pair (also set as cookies)
    """
    _enforce_rate_limit(request, "login")

    result = auth_service.login(db, body.email, body.password, ip_address=get_client_ip(request))
    set_auth_cookies(response, result.tokens)

    return AuthResponse(
        message="Login successful",
        user=UserResponse.model_validate(result.user),
        tokens=_token_response(result.tokens),
    )


@router.post("/refresh", response_model=TokenResponse)
def refresh_token(
    request: Request,
    response: Response,
    body: Optional[RefreshTokenRequest] = None,
    db: Session = Depends(get_db),
):
    """
    Rotate the refresh token (body field or cookie) into a new pair

    A rejected token clears both cookies so the client re-authenticates.
    """
    _enforce_rate_limit(request, "refresh")

    presented = (body.refresh_token if body else None) or request.cookies.get(settings.REFRESH_COOKIE_NAME)
    if not presented:
        return _session_rejected(request, "Refresh token not found")

    tokens = auth_service.refresh(db, presented, ip_address=get_client_ip(request))
    if tokens is None:
        return _session_rejected(request, "Invalid or expired refresh token")

    set_auth_cookies(response, tokens)
    return _token_response(tokens)


@router.post("/logout", response_model=APIResponse, status_code=status.HTTP_200_OK)
def logout(
    request: Request,
    response: Response,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Logout endpoint - revoke every refresh token of the current user
    """
    auth_service.logout(db, current_user.id, ip_address=get_client_ip(request))
    clear_auth_cookies(response)
    return APIResponse(message="Logout successful")


@router.get("/me", response_model=UserResponse)
def get_current_user_info(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Get current user information"""
    return UserResponse.model_validate(auth_service.get_profile(db, current_user.id))
