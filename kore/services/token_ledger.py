"""Persistent ledger of issued refresh tokens."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from kore.core.exceptions import DuplicateTokenError
from kore.core.timeutils import utcnow
from kore.models.security import RefreshToken

logger = logging.getLogger(__name__)


class RefreshTokenLedger:
    """
    Keyed by the token string, with secondary lookups by family and owner.

    Revocation only ever moves ``revoked`` from false to true, and every bulk
    revoke is a single UPDATE so it covers all rows committed before it.
    """

    def record(
        self,
        db: Session,
        *,
        user_id: int,
        token: str,
        token_jti: str,
        family_id: str,
        expires_at: datetime,
    ) -> RefreshToken:
        entry = RefreshToken(
            user_id=user_id,
            token=token,
            token_jti=token_jti,
            family_id=family_id,
            expires_at=expires_at,
            revoked=False,
        )
        db.add(entry)
        try:
            db.flush()
        except IntegrityError:
            db.rollback()
            logger.error("Refresh token collision in family %s", family_id)
            raise DuplicateTokenError()
        return entry

    @staticmethod
    def find_by_token(db: Session, token: str) -> Optional[RefreshToken]:
        return db.query(RefreshToken).filter(RefreshToken.token == token).first()

    @staticmethod
    def list_for_family(db: Session, family_id: str) -> List[RefreshToken]:
        return (
            db.query(RefreshToken)
            .filter(RefreshToken.family_id == family_id)
            .order_by(RefreshToken.id.asc())
            .all()
        )

    @staticmethod
    def active_count_for_user(db: Session, user_id: int) -> int:
        return (
            db.query(RefreshToken)
            .filter(
                RefreshToken.user_id == user_id,
                RefreshToken.revoked == False,  # noqa: E712
                RefreshToken.expires_at > utcnow(),
            )
            .count()
        )

    @staticmethod
    def _revoke_where(db: Session, *criteria) -> int:
        count = (
            db.query(RefreshToken)
            .filter(RefreshToken.revoked == False, *criteria)  # noqa: E712
            .update(
                {RefreshToken.revoked: True, RefreshToken.revoked_at: utcnow()},
                synchronize_session=False,
            )
        )
        db.commit()
        return count

    def revoke(self, db: Session, token: str) -> int:
        return self._revoke_where(db, RefreshToken.token == token)

    def revoke_family(self, db: Session, family_id: str) -> int:
        return self._revoke_where(db, RefreshToken.family_id == family_id)

    def revoke_all_for_user(self, db: Session, user_id: int) -> int:
        return self._revoke_where(db, RefreshToken.user_id == user_id)

    @staticmethod
    def mark_rotated(db: Session, entry: RefreshToken, replaced_by_jti: Optional[str] = None) -> bool:
        """
        Revoke ``entry`` only if it is still unrevoked.

        Returns False when another request revoked it first. Not committed;
        the caller commits together with the replacement entry.
        """
        values = {RefreshToken.revoked: True, RefreshToken.revoked_at: utcnow()}
        if replaced_by_jti:
            values[RefreshToken.replaced_by_jti] = replaced_by_jti
        updated = (
            db.query(RefreshToken)
            .filter(RefreshToken.id == entry.id, RefreshToken.revoked == False)  # noqa: E712
            .update(values, synchronize_session=False)
        )
        return updated == 1

    @staticmethod
    def purge_expired(db: Session, now: Optional[datetime] = None) -> int:
        """Delete entries past their expiry (time-to-live collection)."""
        cutoff = now or utcnow()
        count = (
            db.query(RefreshToken)
            .filter(RefreshToken.expires_at <= cutoff)
            .delete(synchronize_session=False)
        )
        db.commit()
        if count:
            logger.info("Purged %s expired refresh tokens", count)
        return count


token_ledger = RefreshTokenLedger()
