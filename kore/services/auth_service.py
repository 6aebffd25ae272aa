"""Account lifecycle: register, login, refresh, logout."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from kore.core.exceptions import ResourceNotFoundError
from kore.models.user import User
from kore.services.audit_service import (
    EVENT_LOGIN,
    EVENT_LOGOUT,
    EVENT_REGISTERED,
    audit_service,
)
from kore.services.token_service import TokenPair, TokenService, token_service
from kore.services.user_service import UserService, user_service

logger = logging.getLogger(__name__)


@dataclass
class AuthResult:
    user: User
    tokens: TokenPair


class AuthService:
    """Orchestrates the credential store and token service."""

    def __init__(self, users: UserService, tokens: TokenService) -> None:
        self.users = users
        self.tokens = tokens

    def register(
        self,
        db: Session,
        email: str,
        password: str,
        name: str,
        ip_address: Optional[str] = None,
    ) -> AuthResult:
        """Create the account and open a fresh token family for it."""
        user = self.users.create_user(db, email, password, name)
        tokens = self.tokens.issue_token_pair(db, user)
        audit_service.log_event(
            db,
            event_type=EVENT_REGISTERED,
            user_id=user.id,
            family_id=tokens.family_id,
            ip_address=ip_address,
        )
        return AuthResult(user=user, tokens=tokens)

    def login(
        self,
        db: Session,
        email: str,
        password: str,
        ip_address: Optional[str] = None,
    ) -> AuthResult:
        """
        Verify credentials (lockout enforced) and open a new token family.

        Raises:
            InvalidCredentialsError: Unknown email or wrong password
            AccountLockedError: Too many recent failures
        """
        user = self.users.authenticate_user(db, email, password)
        tokens = self.tokens.issue_token_pair(db, user)
        audit_service.log_event(
            db,
            event_type=EVENT_LOGIN,
            user_id=user.id,
            family_id=tokens.family_id,
            ip_address=ip_address,
        )
        return AuthResult(user=user, tokens=tokens)

    def refresh(
        self, db: Session, refresh_token: str, ip_address: Optional[str] = None
    ) -> Optional[TokenPair]:
        """New token pair, or None when the session is no longer valid."""
        return self.tokens.rotate_refresh_token(db, refresh_token, ip_address=ip_address)

    def logout(self, db: Session, user_id: int, ip_address: Optional[str] = None) -> None:
        """Revoke every refresh token of the user; safe to repeat."""
        revoked = self.tokens.revoke_all_for_user(db, user_id)
        logger.info("Logout for user id=%s revoked %s refresh tokens", user_id, revoked)
        if self.users.get_user_by_id(db, user_id) is None:
            return
        audit_service.log_event(
            db,
            event_type=EVENT_LOGOUT,
            user_id=user_id,
            ip_address=ip_address,
            metadata={"revoked_tokens": revoked},
        )

    def get_profile(self, db: Session, user_id: int) -> User:
        user = self.users.get_user_by_id(db, user_id)
        if not user:
            raise ResourceNotFoundError("User")
        return user


auth_service = AuthService(user_service, token_service)
