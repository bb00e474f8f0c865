"""Engine and session factory configuration."""

from functools import lru_cache

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool

from inventory_import.core.config import get_settings


def build_engine(database_url: str) -> Engine:
    """Create an engine, with keepalive pooling for PostgreSQL.

    Imports can run for a long time, so stale connections are pinged
    and recycled after 30 minutes.
    """
    if not database_url.startswith("postgresql"):
        return create_engine(database_url, echo=False, future=True)

    return create_engine(
        database_url,
        echo=False,
        future=True,
        poolclass=QueuePool,
        pool_pre_ping=True,
        pool_recycle=1800,
        pool_size=5,
        max_overflow=10,
        connect_args={
            "connect_timeout": 10,
            "keepalives": 1,
            "keepalives_idle": 30,
            "keepalives_interval": 10,
            "keepalives_count": 5,
        },
    )


@lru_cache
def get_engine() -> Engine:
    return build_engine(get_settings().database_url)


@lru_cache
def get_sessionmaker() -> sessionmaker[Session]:
    return sessionmaker(bind=get_engine(), autoflush=False)


def init_db(engine: Engine | None = None) -> None:
    """Create missing tables. Deployments with managed migrations can skip this."""
    from inventory_import.db.base import Base
    import inventory_import.db.models  # noqa: F401

    Base.metadata.create_all(bind=engine or get_engine())
