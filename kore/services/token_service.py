"""Refresh token rotation and revocation service."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from prometheus_client import Counter
from sqlalchemy.orm import Session

from kore.config import Settings, settings
from kore.core.exceptions import TokenInvalidError
from kore.core.security import (
    TokenIssuer,
    generate_token_family,
    identity_claims,
    token_issuer,
)
from kore.core.timeutils import from_timestamp, utcnow
from kore.models.security import RefreshToken
from kore.models.user import User
from kore.services.audit_service import EVENT_TOKEN_REUSE, audit_service
from kore.services.token_ledger import RefreshTokenLedger, token_ledger

logger = logging.getLogger(__name__)

ROTATION_OUTCOMES = Counter(
    "kore_refresh_token_rotations_total",
    "Refresh token rotation attempts by outcome",
    ["outcome"],
)
REUSE_DETECTED = Counter(
    "kore_refresh_token_reuse_total",
    "Replays of already-rotated refresh tokens (family revoked)",
)


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str
    family_id: str
    access_expires_in: int
    refresh_expires_in: int


@dataclass
class _MintedPair:
    access_token: str
    refresh_token: str
    jti: str
    expires_at: datetime


class TokenService:
    """Issue token pairs and rotate refresh tokens within their family."""

    def __init__(
        self,
        config: Settings,
        issuer: Optional[TokenIssuer] = None,
        ledger: Optional[RefreshTokenLedger] = None,
    ) -> None:
        self._config = config
        self._issuer = issuer or TokenIssuer(config)
        self._ledger = ledger or RefreshTokenLedger()

    @property
    def issuer(self) -> TokenIssuer:
        return self._issuer

    @property
    def ledger(self) -> RefreshTokenLedger:
        return self._ledger

    def _mint(self, claims: Dict[str, Any], family_id: str) -> _MintedPair:
        access_token = self._issuer.issue_access_token(claims)
        refresh_token = self._issuer.issue_refresh_token(claims, family_id)
        payload = self._issuer.verify_refresh_token(refresh_token)
        return _MintedPair(
            access_token=access_token,
            refresh_token=refresh_token,
            jti=payload["jti"],
            expires_at=from_timestamp(payload["exp"]),
        )

    def _pair(self, minted: _MintedPair, family_id: str) -> TokenPair:
        return TokenPair(
            access_token=minted.access_token,
            refresh_token=minted.refresh_token,
            family_id=family_id,
            access_expires_in=self._config.access_token_ttl_seconds,
            refresh_expires_in=self._config.refresh_token_ttl_seconds,
        )

    def issue_token_pair(self, db: Session, user: User, family_id: Optional[str] = None) -> TokenPair:
        """
        Mint an access/refresh pair and record the refresh token.

        Args:
            db: Database session
            user: Token owner
            family_id: Existing family to extend; a new one is generated if omitted

        Returns:
            TokenPair
        """
        family_id = family_id or generate_token_family()
        minted = self._mint(identity_claims(user), family_id)
        self._ledger.record(
            db,
            user_id=user.id,
            token=minted.refresh_token,
            token_jti=minted.jti,
            family_id=family_id,
            expires_at=minted.expires_at,
        )
        db.commit()
        return self._pair(minted, family_id)

    def _handle_reuse(self, db: Session, entry: RefreshToken, ip_address: Optional[str]) -> None:
        family_id = entry.family_id
        user_id = entry.user_id
        revoked = self._ledger.revoke_family(db, family_id)
        REUSE_DETECTED.inc()
        logger.warning(
            "Refresh token reuse detected: family=%s user id=%s, revoked %s tokens",
            family_id,
            user_id,
            revoked,
        )
        audit_service.log_event(
            db,
            event_type=EVENT_TOKEN_REUSE,
            user_id=user_id,
            severity="warning",
            family_id=family_id,
            ip_address=ip_address,
            metadata={"revoked_tokens": revoked},
        )

    def rotate_refresh_token(
        self, db: Session, presented_token: str, ip_address: Optional[str] = None
    ) -> Optional[TokenPair]:
        """
        Exchange a refresh token for a new pair in the same family.

        Every "this token is no longer usable" outcome returns None; only
        ledger write failures raise. Checks run in priority order: revoked
        (reuse), then expired, then signature/claims, then the owner still
        existing. New tokens carry the owner's current email and role.
        """
        entry = self._ledger.find_by_token(db, presented_token)
        if entry is None:
            ROTATION_OUTCOMES.labels("unknown").inc()
            return None

        if entry.revoked:
            ROTATION_OUTCOMES.labels("reused").inc()
            self._handle_reuse(db, entry, ip_address)
            return None

        if entry.is_expired(utcnow()):
            ROTATION_OUTCOMES.labels("expired").inc()
            self._ledger.revoke(db, presented_token)
            return None

        try:
            payload = self._issuer.verify_refresh_token(presented_token)
        except TokenInvalidError as exc:
            payload = None
            logger.warning("Ledger entry %s failed verification: %s", entry.id, exc.message)
        if payload is not None and (
            payload["sub"] != str(entry.user_id) or payload["fam"] != entry.family_id
        ):
            logger.warning("Ledger entry %s does not match its token claims", entry.id)
            payload = None
        if payload is None:
            ROTATION_OUTCOMES.labels("invalid").inc()
            self._ledger.revoke(db, presented_token)
            return None

        owner = db.query(User).filter(User.id == entry.user_id).first()
        if owner is None:
            ROTATION_OUTCOMES.labels("orphaned").inc()
            logger.warning("Ledger entry %s belongs to deleted user id=%s", entry.id, entry.user_id)
            self._ledger.revoke(db, presented_token)
            return None

        family_id = entry.family_id
        minted = self._mint(identity_claims(owner), family_id)

        if not self._ledger.mark_rotated(db, entry, replaced_by_jti=minted.jti):
            # Revoked by a concurrent request between our read and write
            db.rollback()
            ROTATION_OUTCOMES.labels("reused").inc()
            self._handle_reuse(db, entry, ip_address)
            return None

        self._ledger.record(
            db,
            user_id=entry.user_id,
            token=minted.refresh_token,
            token_jti=minted.jti,
            family_id=family_id,
            expires_at=minted.expires_at,
        )
        db.commit()

        ROTATION_OUTCOMES.labels("rotated").inc()
        return self._pair(minted, family_id)

    def revoke_refresh_token(self, db: Session, refresh_token: str) -> bool:
        """Revoke a single refresh token; False if the ledger has no such token."""
        if self._ledger.find_by_token(db, refresh_token) is None:
            return False
        self._ledger.revoke(db, refresh_token)
        return True

    def revoke_all_for_user(self, db: Session, user_id: int) -> int:
        return self._ledger.revoke_all_for_user(db, user_id)


token_service = TokenService(settings, issuer=token_issuer, ledger=token_ledger)
