"""Engine, session factory and declarative base"""

from sqlalchemy import create_engine, text, inspect
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from typing import Any, Dict, Generator
from kore.config import settings
import logging

logger = logging.getLogger(__name__)


def _engine_options(url: str) -> Dict[str, Any]:
    """Pool options apply to server databases only; SQLite uses its own pools."""
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}, "echo": settings.DEBUG}
    return {
        "pool_size": settings.DATABASE_POOL_SIZE,
        "max_overflow": settings.DATABASE_MAX_OVERFLOW,
        "pool_timeout": 30,
        "pool_recycle": 3600,
        "pool_pre_ping": True,
        "echo": settings.DEBUG,
    }


_database_url = settings.get_database_url()
engine = create_engine(_database_url, **_engine_options(_database_url))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

# Registers every model on Base.metadata
from kore import models  # noqa: E402,F401


def get_db() -> Generator[Session, None, None]:
    """Request-scoped session, closed when the response is sent"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _has_migration_table(conn) -> bool:
    if conn.dialect.name == "postgresql":
        return bool(conn.execute(text("SELECT to_regclass('public.alembic_version')")).scalar())
    return inspect(conn).has_table("alembic_version")


def init_db() -> None:
    """
    Prepare the schema according to DB_INIT_MODE.

    ``migrate`` expects ``alembic upgrade head`` to have run already,
    ``create_all`` builds tables from the models (tests, local runs),
    ``off`` does nothing.
    """
    mode = settings.DB_INIT_MODE.lower().strip()

    if mode == "off":
        logger.info("Schema check disabled")
    elif mode == "create_all":
        Base.metadata.create_all(bind=engine)
        logger.warning("Tables created from model metadata; use migrations outside development")
    elif mode == "migrate":
        with engine.connect() as conn:
            migrated = _has_migration_table(conn)
        if not migrated and settings.DB_REQUIRE_HEAD:
            raise RuntimeError("alembic_version table missing; run `alembic upgrade head` first")
        logger.info("Schema managed by migrations (alembic_version present: %s)", migrated)
    else:
        raise RuntimeError(f"Unknown DB_INIT_MODE: {settings.DB_INIT_MODE}")
