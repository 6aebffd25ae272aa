"""Security utilities - JWT signing, password hashing"""

from datetime import timedelta
from typing import Optional, Dict, Any
import secrets
import uuid

from jose import ExpiredSignatureError, JWTError, jwt
import bcrypt

from kore.config import Settings, settings
from kore.core.exceptions import TokenExpiredError, TokenInvalidError, ValidationError
from kore.core.timeutils import utcnow

TOKEN_TYPE_ACCESS = "access"
TOKEN_TYPE_REFRESH = "refresh"

# Claims copied from the identity into both token types
IDENTITY_CLAIMS = ("sub", "email", "role")


# bcrypt only reads the first 72 bytes; bcrypt>=5 rejects anything longer
BCRYPT_MAX_PASSWORD_BYTES = 72


def password_too_long(password: str) -> bool:
    return len(password.encode('utf-8')) > BCRYPT_MAX_PASSWORD_BYTES


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a password against its hash

    Args:
        plain_password: Plain text password
        hashed_password: Hashed password

    Returns:
        bool: True if password matches
    """
    if not hashed_password or password_too_long(plain_password):
        return False
    try:
        return bcrypt.checkpw(
            plain_password.encode('utf-8'),
            hashed_password.encode('utf-8')
        )
    except ValueError:
        # Malformed stored hash
        return False


def get_password_hash(password: str, rounds: Optional[int] = None) -> str:
    """
    Hash a password using bcrypt

    Args:
        password: Plain text password
        rounds: bcrypt cost factor (log2 of iterations)

    Returns:
        str: Hashed password

    Raises:
        ValidationError: Password longer than bcrypt accepts
    """
    if password_too_long(password):
        raise ValidationError(
            f"Password must be at most {BCRYPT_MAX_PASSWORD_BYTES} bytes",
            details={"field": "password"},
        )
    return bcrypt.hashpw(
        password.encode('utf-8'),
        bcrypt.gensalt(rounds=rounds or settings.BCRYPT_ROUNDS)
    ).decode('utf-8')


def generate_token_family() -> str:
    """Fresh rotation-family identifier for a new login or registration."""
    return str(uuid.uuid4())


def identity_claims(user) -> Dict[str, Any]:
    """Claims carried by every token issued for ``user``."""
    return {"sub": str(user.id), "email": user.email, "role": user.role}


class TokenIssuer:
    """
    Mint and verify signed access/refresh tokens.

    Access and refresh tokens are signed with independent secrets, so a
    refresh token can never be accepted where an access token is expected
    (and the reverse). Every token carries a random ``jti`` which makes two
    tokens minted for the same identity in the same second distinct.
    """

    def __init__(self, config: Settings) -> None:
        self._config = config

    @property
    def access_ttl(self) -> timedelta:
        return timedelta(minutes=self._config.ACCESS_TOKEN_EXPIRE_MINUTES)

    @property
    def refresh_ttl(self) -> timedelta:
        return timedelta(days=self._config.REFRESH_TOKEN_EXPIRE_DAYS)

    def _encode(
        self,
        claims: Dict[str, Any],
        *,
        typ: str,
        secret: str,
        expires_delta: timedelta,
        extra: Optional[Dict[str, Any]] = None,
    ) -> str:
        now = utcnow()
        to_encode = {key: claims[key] for key in IDENTITY_CLAIMS if key in claims}
        to_encode.update(extra or {})
        to_encode.update({
            "typ": typ,
            "exp": now + expires_delta,
            "iat": now,
            "jti": secrets.token_urlsafe(32),
        })
        return jwt.encode(to_encode, secret, algorithm=self._config.ALGORITHM)

    def _decode(self, token: str, *, typ: str, secret: str) -> Dict[str, Any]:
        try:
            payload = jwt.decode(token, secret, algorithms=[self._config.ALGORITHM])
        except ExpiredSignatureError:
            raise TokenExpiredError()
        except JWTError:
            raise TokenInvalidError()

        if payload.get("typ") != typ:
            raise TokenInvalidError(f"Expected {typ} token")
        if not payload.get("sub") or not payload.get("jti"):
            raise TokenInvalidError("Malformed token claims")
        return payload

    def issue_access_token(
        self, claims: Dict[str, Any], expires_delta: Optional[timedelta] = None
    ) -> str:
        """
        Create a short-lived access token

        Args:
            claims: Identity claims (sub, email, role)
            expires_delta: Override of the configured lifetime

        Returns:
            str: Encoded JWT
        """
        return self._encode(
            claims,
            typ=TOKEN_TYPE_ACCESS,
            secret=self._config.JWT_ACCESS_SECRET,
            expires_delta=expires_delta or self.access_ttl,
        )

    def issue_refresh_token(
        self,
        claims: Dict[str, Any],
        family_id: str,
        expires_delta: Optional[timedelta] = None,
    ) -> str:
        """
        Create a long-lived refresh token bound to a rotation family

        Args:
            claims: Identity claims (sub, email, role)
            family_id: Rotation family the token belongs to
            expires_delta: Override of the configured lifetime

        Returns:
            str: Encoded JWT
        """
        return self._encode(
            claims,
            typ=TOKEN_TYPE_REFRESH,
            secret=self._config.JWT_REFRESH_SECRET,
            expires_delta=expires_delta or self.refresh_ttl,
            extra={"fam": family_id},
        )

    def verify_access_token(self, token: str) -> Dict[str, Any]:
        """Return access token claims or raise TokenInvalidError/TokenExpiredError."""
        return self._decode(token, typ=TOKEN_TYPE_ACCESS, secret=self._config.JWT_ACCESS_SECRET)

    def verify_refresh_token(self, token: str) -> Dict[str, Any]:
        """Return refresh token claims or raise TokenInvalidError/TokenExpiredError."""
        payload = self._decode(token, typ=TOKEN_TYPE_REFRESH, secret=self._config.JWT_REFRESH_SECRET)
        if not payload.get("fam"):
            raise TokenInvalidError("Malformed token claims")
        return payload

    def decode_access_token(self, token: str) -> Optional[Dict[str, Any]]:
        """
        Decode and verify an access token

        Args:
            token: JWT token string

        Returns:
            Optional[Dict]: Decoded token data or None if invalid
        """
        try:
            return self.verify_access_token(token)
        except TokenInvalidError:
            return None


token_issuer = TokenIssuer(settings)
