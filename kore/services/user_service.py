"""User service - credential store and account lockout"""

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import timedelta
from functools import cached_property
import logging

from kore.config import Settings, settings
from kore.core.exceptions import (
    AccountLockedError,
    BadRequestError,
    DuplicateEmailError,
    InvalidCredentialsError,
)
from kore.core.security import get_password_hash, verify_password
from kore.core.timeutils import naive_utc, utcnow
from kore.models.security import RefreshToken
from kore.models.user import User
from kore.services.audit_service import EVENT_ACCOUNT_LOCKED, EVENT_USER_DELETED, audit_service

logger = logging.getLogger(__name__)


class UserService:
    """Create and authenticate identities, enforcing the lockout policy"""

    def __init__(self, config: Settings) -> None:
        self._config = config

    @property
    def max_failed_attempts(self) -> int:
        return self._config.MAX_LOGIN_ATTEMPTS

    @property
    def lockout_duration(self) -> timedelta:
        return timedelta(minutes=self._config.LOCK_TIME_MINUTES)

    @cached_property
    def _placeholder_hash(self) -> str:
        # Checked for unknown emails so both failure paths cost one bcrypt round
        return get_password_hash("placeholder-Passw0rd", rounds=self._config.BCRYPT_ROUNDS)

    def create_user(
        self,
        db: Session,
        email: str,
        password: str,
        name: str,
        role: str = "user",
    ) -> User:
        """
        Create new user

        Args:
            db: Database session
            email: Email address (matched case-insensitively)
            password: Plain text password, hashed before storage
            name: Display name
            role: "user" or "admin"

        Returns:
            Created user

        Raises:
            DuplicateEmailError: If the email is already registered
        """
        email = User.normalize_email(email)
        if self.get_user_by_email(db, email):
            raise DuplicateEmailError()

        user = User(email=email, name=name.strip(), role=role, failed_login_attempts=0)
        user.set_password(password, rounds=self._config.BCRYPT_ROUNDS)

        db.add(user)
        try:
            db.commit()
        except IntegrityError:
            # Lost a race against a concurrent registration
            db.rollback()
            raise DuplicateEmailError()
        db.refresh(user)

        logger.info("Created user id=%s (role: %s)", user.id, user.role)
        return user

    def authenticate_user(self, db: Session, email: str, password: str) -> User:
        """
        Authenticate user with account lockout protection

        Args:
            db: Database session
            email: Email address
            password: Password

        Returns:
            Authenticated user

        Raises:
            InvalidCredentialsError: Unknown email or wrong password
            AccountLockedError: Lock still in force, whatever the password
        """
        user = self.get_user_by_email(db, email)
        if not user:
            verify_password(password, self._placeholder_hash)
            raise InvalidCredentialsError()

        now = utcnow()
        if user.is_locked(now):
            raise AccountLockedError(
                user.lock_minutes_remaining(now),
                naive_utc(user.locked_until).isoformat(),
            )

        if not user.check_password(password):
            self.register_failed_attempt(db, user)
            raise InvalidCredentialsError()

        if user.failed_login_attempts:
            self.reset_failed_attempts(db, user)

        user.last_login = now
        db.commit()
        db.refresh(user)

        logger.info("User authenticated: id=%s", user.id)
        return user

    def register_failed_attempt(self, db: Session, user: User) -> bool:
        """
        Count one failed login against ``user``.

        The increment is done in SQL so concurrent failures are never lost;
        a race may over-count, which only locks earlier.

        Returns:
            True if this attempt locked the account
        """
        now = utcnow()
        rows = db.query(User).filter(User.id == user.id)

        locked_until = naive_utc(user.locked_until)
        if locked_until and locked_until <= now:
            # Stale lock: start counting again from this failure
            rows.update(
                {User.failed_login_attempts: 1, User.locked_until: None},
                synchronize_session=False,
            )
            db.commit()
            db.refresh(user)
            return False

        rows.update(
            {User.failed_login_attempts: User.failed_login_attempts + 1},
            synchronize_session=False,
        )
        db.commit()
        db.refresh(user)

        if user.failed_login_attempts < self.max_failed_attempts or user.is_locked(now):
            return False

        user.locked_until = now + self.lockout_duration
        db.commit()

        logger.warning(
            "Account locked: user id=%s after %s failed attempts",
            user.id,
            user.failed_login_attempts,
        )
        audit_service.log_event(
            db,
            event_type=EVENT_ACCOUNT_LOCKED,
            user_id=user.id,
            severity="warning",
            metadata={
                "failed_attempts": user.failed_login_attempts,
                "locked_until": user.locked_until,
            },
        )
        return True

    def reset_failed_attempts(self, db: Session, user: User) -> None:
        user.failed_login_attempts = 0
        user.locked_until = None
        db.commit()

    def update_profile(
        self,
        db: Session,
        user: User,
        name: Optional[str] = None,
        password: Optional[str] = None,
    ) -> User:
        """Owner edit of name and/or password"""
        if name is not None:
            user.name = name.strip()
        if password is not None:
            user.set_password(password, rounds=self._config.BCRYPT_ROUNDS)
        db.commit()
        db.refresh(user)

        logger.info("Updated profile for user id=%s", user.id)
        return user

    def delete_user(
        self,
        db: Session,
        user: User,
        deleted_by: Optional[int] = None,
        ip_address: Optional[str] = None,
    ) -> None:
        """
        Remove a customer account and its refresh tokens

        Raises:
            BadRequestError: Admin accounts cannot be deleted
        """
        if user.role == "admin":
            raise BadRequestError("Cannot delete admin user")

        user_id = user.id
        email = user.email
        db.delete(user)
        db.flush()
        # SQLite does not enforce the ON DELETE CASCADE without PRAGMA foreign_keys
        db.query(RefreshToken).filter(RefreshToken.user_id == user_id).delete(synchronize_session=False)
        db.commit()

        logger.info("Deleted user id=%s", user_id)
        audit_service.log_event(
            db,
            event_type=EVENT_USER_DELETED,
            user_id=deleted_by,
            ip_address=ip_address,
            metadata={"deleted_user_id": user_id, "email": email},
        )

    @staticmethod
    def get_user_by_id(db: Session, user_id: int) -> Optional[User]:
        """Get user by ID"""
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def get_user_by_email(db: Session, email: str) -> Optional[User]:
        """Get user by email (case-insensitive)"""
        return db.query(User).filter(User.email == User.normalize_email(email)).first()

    @staticmethod
    def get_all_users(db: Session, role: Optional[str] = None) -> List[User]:
        """Get all users, newest first, optionally filtered by role"""
        query = db.query(User)

        if role:
            query = query.filter(User.role == role)

        return query.order_by(User.created_at.desc(), User.id.desc()).all()


# Singleton instance
user_service = UserService(settings)
