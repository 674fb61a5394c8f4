# tenant_backup/core/db.py

"""
Job ledger database: engine, session factory and declarative base.

The engine is created lazily from Settings so importing models never opens a
connection.
"""

from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from tenant_backup.core.config import get_settings


class Base(DeclarativeBase):
    pass


@lru_cache
def get_engine():
    settings = get_settings()
    url = settings.db_url
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(url, pool_pre_ping=True, connect_args=connect_args)


@lru_cache
def get_session_factory() -> sessionmaker:
    return sessionmaker(bind=get_engine(), autoflush=False, expire_on_commit=False)


def SessionLocal():
    """Open a new ledger session."""
    return get_session_factory()()


def get_db():
    """FastAPI dependency yielding a ledger session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(engine=None) -> None:
    """Create ledger tables that do not exist yet."""
    # Register models on Base.metadata
    import tenant_backup.backups.models  # noqa: F401

    Base.metadata.create_all(bind=engine or get_engine())
