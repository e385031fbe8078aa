"""
Engine and session factory helpers.

The pipeline is async but the storage layer uses a synchronous engine; every
repository call runs its session work through ``asyncio.to_thread``.
"""

from datetime import datetime, timezone

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    connect_args = {}
    if database_url.startswith("sqlite"):
        # Sessions are opened from worker threads
        connect_args = {"check_same_thread": False, "timeout": 30}
    return create_engine(database_url, echo=echo, future=True, connect_args=connect_args)


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, expire_on_commit=False)


def init_schema(engine: Engine) -> None:
    """Create all tables that do not exist yet."""
    from llmstxt_pipeline.storage import models  # noqa: F401

    Base.metadata.create_all(engine)
