"""Database session management."""

from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from promoguard_engine.settings import get_settings


@lru_cache()
def get_engine() -> Engine:
    """Engine for the configured database, created on first use."""
    settings = get_settings()
    url = settings.database_url_computed
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
    )


@lru_cache()
def get_session_factory() -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=get_engine())


def init_db() -> None:
    """Create tables that do not exist yet."""
    from promoguard_engine import models  # noqa: F401
    from promoguard_engine.db.base import Base

    Base.metadata.create_all(get_engine())
