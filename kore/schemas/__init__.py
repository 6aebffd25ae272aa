"""Pydantic schemas for API validation"""

from kore.schemas.user import (
    UserRole,
    RegisterRequest,
    LoginRequest,
    RefreshTokenRequest,
    ProfileUpdate,
    UserResponse,
    TokenResponse,
    AuthResponse,
)
from kore.schemas.response import APIResponse, ErrorResponse
from kore.schemas.security import SecurityEventResponse

__all__ = [
    "UserRole", "RegisterRequest", "LoginRequest", "RefreshTokenRequest", "ProfileUpdate",
    "UserResponse", "TokenResponse", "AuthResponse",
    "APIResponse", "ErrorResponse", "SecurityEventResponse",
]
