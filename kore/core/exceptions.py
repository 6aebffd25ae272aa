"""Custom exception classes for the application"""

from typing import Optional, Dict, Any


class BaseAPIException(Exception):
    """Base exception for all API errors"""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


# Authentication Errors
class AuthenticationError(BaseAPIException):
    """Base authentication error"""
    def __init__(self, message: str = "Authentication failed"):
        super().__init__(message, status_code=401)


class InvalidCredentialsError(AuthenticationError):
    """Invalid email or password (same message for both)"""
    def __init__(self):
        super().__init__("Invalid email or password")


class TokenInvalidError(AuthenticationError):
    """Token signature, type or claims are invalid"""
    def __init__(self, message: str = "Invalid token"):
        super().__init__(message)


class TokenExpiredError(TokenInvalidError):
    """Token has expired"""
    def __init__(self):
        super().__init__("Token has expired")


# Authorization Errors
class AuthorizationError(BaseAPIException):
    """Insufficient permissions"""
    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(message, status_code=403)


class AccountLockedError(AuthorizationError):
    """Account is locked due to failed login attempts"""
    def __init__(self, minutes_left: int, locked_until: str):
        super().__init__(
            f"Account is locked. Please try again in {minutes_left} minutes."
        )
        self.minutes_left = minutes_left
        self.details = {"locked_until": locked_until, "minutes_left": minutes_left}


# Resource Errors
class ResourceNotFoundError(BaseAPIException):
    """Resource not found"""
    def __init__(self, resource: str):
        super().__init__(f"{resource} not found", status_code=404)


class ResourceAlreadyExistsError(BaseAPIException):
    """Resource already exists"""
    def __init__(self, resource: str):
        super().__init__(f"{resource} already exists", status_code=409)


class DuplicateEmailError(ResourceAlreadyExistsError):
    """Email already registered"""
    def __init__(self):
        BaseAPIException.__init__(self, "Email already registered", status_code=409)


class DuplicateTokenError(ResourceAlreadyExistsError):
    """Refresh token string collided with an existing ledger entry"""
    def __init__(self):
        super().__init__("Refresh token")


# Request Errors
class BadRequestError(BaseAPIException):
    """Request is well-formed but not allowed"""
    def __init__(self, message: str):
        super().__init__(message, status_code=400)


class ValidationError(BaseAPIException):
    """Input rejected below the schema layer"""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code=422, details=details)


class RateLimitExceededError(BaseAPIException):
    """Rate limit exceeded"""
    def __init__(self, message: str = "Rate limit exceeded. Please try again later."):
        super().__init__(message, status_code=429)
