"""Security-related persistence models."""

from datetime import datetime
from typing import Optional

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Index, Text
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from kore.core.database import Base
from kore.core.timeutils import naive_utc, utcnow


class RefreshToken(Base):
    """Ledger entry for one issued refresh token."""

    __tablename__ = "refresh_tokens"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    token = Column(Text, nullable=False, unique=True)
    token_jti = Column(String(128), unique=True, nullable=False, index=True)
    family_id = Column(String(128), nullable=False, index=True)
    replaced_by_jti = Column(String(128), nullable=True)
    revoked = Column(Boolean, default=False, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", back_populates="refresh_tokens")

    __table_args__ = (
        Index("idx_refresh_tokens_user_revoked", "user_id", "revoked"),
        Index("idx_refresh_tokens_family_revoked", "family_id", "revoked"),
    )

    def __repr__(self):
        return (
            f"<RefreshToken(id={self.id}, user_id={self.user_id}, "
            f"family='{self.family_id}', revoked={self.revoked})>"
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return naive_utc(self.expires_at) <= (now or utcnow())

    def is_active(self, now: Optional[datetime] = None) -> bool:
        return not self.revoked and not self.is_expired(now)


class SecurityEvent(Base):
    """Append-only trail of authentication events (lockouts, token reuse, logouts)."""

    __tablename__ = "security_events"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    event_type = Column(String(64), nullable=False, index=True)
    severity = Column(String(16), nullable=False, default="info")
    family_id = Column(String(128), nullable=True, index=True)
    ip_address = Column(String(64), nullable=True)
    detail_json = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("idx_security_events_created_at", "created_at"),
    )
