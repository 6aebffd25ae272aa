"""Runtime settings for the auth service, read from the environment and .env"""

import json
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, List

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict
from sqlalchemy.engine import URL

_BASE_DIR = Path(__file__).resolve().parent.parent

_DEV_ACCESS_SECRET = "dev-access-secret-change-in-production-use-openssl-rand-hex-32"
_DEV_REFRESH_SECRET = "dev-refresh-secret-change-in-production-use-openssl-rand-hex-32"


def _origins_from_env(raw: str) -> List[str]:
    raw = raw.strip()
    if raw.startswith(("[", '"')):
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError:
            decoded = None
        if isinstance(decoded, str):
            return [decoded.strip()] if decoded.strip() else []
        if isinstance(decoded, list):
            raw = ",".join(str(item) for item in decoded)
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    # Application
    APP_NAME: str = "Kore Commerce API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    WORKERS: int = 4

    # Database (PostgreSQL)
    DATABASE_URL: str = ""
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "kore_ecommerce"
    POSTGRES_USER: str = "kore"
    POSTGRES_PASSWORD: str = "kore"
    DATABASE_POOL_SIZE: int = 30
    DATABASE_MAX_OVERFLOW: int = 20

    # Token signing (two independent secrets)
    JWT_ACCESS_SECRET: str = _DEV_ACCESS_SECRET
    JWT_REFRESH_SECRET: str = _DEV_REFRESH_SECRET
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7

    # Account security
    BCRYPT_ROUNDS: int = 12
    MAX_LOGIN_ATTEMPTS: int = 5
    LOCK_TIME_MINUTES: int = 30

    # Rate Limiting (per client IP)
    AUTH_RATE_LIMIT_PER_MINUTE: int = 20
    AUTH_RATE_LIMIT_PER_HOUR: int = 200

    # Cookies
    COOKIE_DOMAIN: str = ""
    COOKIE_SECURE: bool = False
    ACCESS_COOKIE_NAME: str = "access_token"
    REFRESH_COOKIE_NAME: str = "refresh_token"
    REFRESH_COOKIE_PATH: str = "/api/v1/auth"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    # CORS
    CORS_ORIGINS: Annotated[List[str], NoDecode] = ["http://localhost:5173"]

    # Admin bootstrap
    ADMIN_EMAIL: str = "admin@kore.local"
    ADMIN_PASSWORD: str = "Admin12345"
    ADMIN_NAME: str = "Administrator"

    # Expired refresh token collection
    RUN_TOKEN_CLEANUP: bool = True
    TOKEN_CLEANUP_INTERVAL_SECONDS: float = 3600.0

    # Database initialization discipline
    DB_INIT_MODE: str = "migrate"  # migrate | create_all | off
    DB_REQUIRE_HEAD: bool = True

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def _split_cors_origins(cls, value: Any) -> Any:
        """CORS_ORIGINS may be a JSON array, a JSON string or a comma list"""
        if isinstance(value, str):
            return _origins_from_env(value)
        return value

    @property
    def access_token_ttl_seconds(self) -> int:
        return self.ACCESS_TOKEN_EXPIRE_MINUTES * 60

    @property
    def refresh_token_ttl_seconds(self) -> int:
        return self.REFRESH_TOKEN_EXPIRE_DAYS * 24 * 60 * 60

    def get_log_file(self) -> str:
        if self.LOG_FILE and not self.LOG_FILE.startswith(".."):
            return self.LOG_FILE
        return str(_BASE_DIR / "logs" / "app.log")

    def get_database_url(self) -> str:
        """DATABASE_URL wins; otherwise a PostgreSQL URL is built from the POSTGRES_* parts"""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        url = URL.create(
            "postgresql+psycopg2",
            username=self.POSTGRES_USER,
            password=self.POSTGRES_PASSWORD,
            host=self.POSTGRES_HOST,
            port=self.POSTGRES_PORT,
            database=self.POSTGRES_DB,
        )
        return url.render_as_string(hide_password=False)

    def validate_security_settings(self) -> None:
        """
        Validate runtime security defaults in production.

        Raises:
            ValueError: If insecure defaults are detected.
        """
        if self.ENVIRONMENT.lower() != "production":
            return

        insecure_secret_markers = {"", _DEV_ACCESS_SECRET, _DEV_REFRESH_SECRET, "change-me"}

        for name in ("JWT_ACCESS_SECRET", "JWT_REFRESH_SECRET"):
            secret = getattr(self, name)
            if secret in insecure_secret_markers or len(secret) < 32:
                raise ValueError(
                    f"Insecure {name} for production. Use a strong key (e.g. `openssl rand -hex 32`)."
                )

        if self.JWT_ACCESS_SECRET == self.JWT_REFRESH_SECRET:
            raise ValueError("JWT_ACCESS_SECRET and JWT_REFRESH_SECRET must differ.")

        if self.BCRYPT_ROUNDS < 12:
            raise ValueError("BCRYPT_ROUNDS must be at least 12 in production.")

        if self.ADMIN_PASSWORD in {"", "Admin12345"} or len(self.ADMIN_PASSWORD) < 10:
            raise ValueError(
                "Insecure ADMIN_PASSWORD for production. Set a strong admin password before startup."
            )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


settings = get_settings()
