"""Database models"""

from kore.models.user import User
from kore.models.security import RefreshToken, SecurityEvent

__all__ = ["User", "RefreshToken", "SecurityEvent"]
