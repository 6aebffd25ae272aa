import os
import tempfile

# Settings are read at import time, so configure the environment first.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("DB_INIT_MODE", "create_all")
os.environ.setdefault("RUN_TOKEN_CLEANUP", "false")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOG_FILE", os.path.join(tempfile.gettempdir(), "kore-tests", "app.log"))

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from kore.config import Settings
from kore.core.database import Base
from kore.services.auth_service import AuthService
from kore.services.token_service import TokenService
from kore.services.user_service import UserService


@pytest.fixture
def test_settings():
    return Settings(
        JWT_ACCESS_SECRET="test-access-secret-0123456789abcdef0123456789",
        JWT_REFRESH_SECRET="test-refresh-secret-0123456789abcdef012345678",
        BCRYPT_ROUNDS=4,
        MAX_LOGIN_ATTEMPTS=5,
        LOCK_TIME_MINUTES=30,
    )


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def users(test_settings):
    return UserService(test_settings)


@pytest.fixture
def tokens(test_settings):
    return TokenService(test_settings)


@pytest.fixture
def auth(users, tokens):
    return AuthService(users, tokens)
