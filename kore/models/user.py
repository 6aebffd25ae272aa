"""User model"""

import math
from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, Column, Integer, String, DateTime, Index
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from kore.core.database import Base
from kore.core.security import get_password_hash, verify_password
from kore.core.timeutils import naive_utc, utcnow


class User(Base):
    """Customer or admin identity with lockout counters"""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    name = Column(String(100), nullable=False)
    role = Column(String(20), default="user", nullable=False, index=True)
    failed_login_attempts = Column(Integer, default=0, nullable=False)
    locked_until = Column(DateTime(timezone=True), nullable=True)
    last_login = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    refresh_tokens = relationship(
        "RefreshToken", back_populates="user", cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (
        Index('idx_users_created_at', 'created_at'),
        CheckConstraint("role IN ('user', 'admin')", name="chk_users_role"),
    )

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}', role='{self.role}')>"

    @staticmethod
    def normalize_email(email: str) -> str:
        return email.strip().lower()

    def set_password(self, plain_password: str, rounds: Optional[int] = None) -> None:
        """Hash and store a new password immediately."""
        self.password_hash = get_password_hash(plain_password, rounds=rounds)

    def check_password(self, plain_password: str) -> bool:
        return verify_password(plain_password, self.password_hash)

    def is_locked(self, now: Optional[datetime] = None) -> bool:
        locked_until = naive_utc(self.locked_until)
        if not locked_until:
            return False
        return locked_until > (now or utcnow())

    def lock_minutes_remaining(self, now: Optional[datetime] = None) -> int:
        """Whole minutes (rounded up) until the lock lifts, 0 when unlocked."""
        if not self.is_locked(now):
            return 0
        remaining = naive_utc(self.locked_until) - (now or utcnow())
        return max(1, math.ceil(remaining.total_seconds() / 60))

    def to_dict(self):
        """Public representation (never includes the password hash)"""
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
