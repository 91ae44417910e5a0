import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from datathon.core.config import settings
from datathon.db.base import Base

logger = logging.getLogger(__name__)


def build_engine(url: str):
    """Create an engine for ``url``.

    SQLite connections are shared across threads; an in-memory database
    additionally needs a single static connection so every session sees
    the same tables.
    """
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)
    return create_engine(
        url,
        pool_pre_ping=True,
        connect_args={"connect_timeout": 30} if url.startswith("postgresql") else {},
    )


def build_session_factory(engine):
    # Records are handed back to callers after commit, so keep them loaded.
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


engine = build_engine(settings.DATABASE_URL)

# Create session factory
SessionLocal = build_session_factory(engine)


def init_db(bind=None):
    """Create tables. Models must be imported so their metadata is registered."""
    import datathon.models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
