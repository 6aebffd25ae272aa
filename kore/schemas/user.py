"""User and authentication schemas"""

import re
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from kore.core.security import BCRYPT_MAX_PASSWORD_BYTES, password_too_long

_EMAIL_RE = re.compile(r"^\S+@\S+\.\S+$")


class UserRole(str, Enum):
    """User role enumeration"""
    USER = "user"
    ADMIN = "admin"


def _clean_email(value: str) -> str:
    value = value.strip().lower()
    if not _EMAIL_RE.match(value):
        raise ValueError("Invalid email format")
    return value


def _check_password_strength(value: str) -> str:
    if password_too_long(value):
        raise ValueError(f"Password must be at most {BCRYPT_MAX_PASSWORD_BYTES} bytes")
    if not (re.search(r"[a-z]", value) and re.search(r"[A-Z]", value) and re.search(r"\d", value)):
        raise ValueError(
            "Password must contain at least one uppercase letter, one lowercase letter, and one number"
        )
    return value


class RegisterRequest(BaseModel):
    """Registration schema"""
    email: str = Field(..., max_length=255)
    password: str = Field(..., min_length=8, max_length=BCRYPT_MAX_PASSWORD_BYTES)
    name: str = Field(..., min_length=2, max_length=100)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v):
        return _clean_email(v)

    @field_validator("password")
    @classmethod
    def password_strength(cls, v):
        return _check_password_strength(v)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v):
        v = v.strip()
        if len(v) < 2:
            raise ValueError("Name must be at least 2 characters")
        return v


class LoginRequest(BaseModel):
    """Login schema"""
    email: str = Field(..., max_length=255)
    password: str = Field(..., min_length=1)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v):
        return _clean_email(v)


class RefreshTokenRequest(BaseModel):
    """Refresh token may also arrive in a cookie, so the body field is optional"""
    refresh_token: Optional[str] = None


class ProfileUpdate(BaseModel):
    """Owner profile edit"""
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    password: Optional[str] = Field(None, min_length=8, max_length=BCRYPT_MAX_PASSWORD_BYTES)

    @field_validator("password")
    @classmethod
    def password_strength(cls, v):
        return v if v is None else _check_password_strength(v)

    @model_validator(mode="after")
    def require_change(self):
        if self.name is None and self.password is None:
            raise ValueError("Provide a name or password to update")
        return self


class UserResponse(BaseModel):
    """User response schema"""
    id: int
    email: str
    name: str
    role: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TokenResponse(BaseModel):
    """Issued token pair"""
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class AuthResponse(BaseModel):
    """Register/login response"""
    success: bool = True
    message: str
    user: UserResponse
    tokens: TokenResponse
