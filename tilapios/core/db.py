from loguru import logger
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

from tilapios.models import LocalEntry, RemoteDocument


def normalize_database_url(url: str) -> str:
    """Point Postgres URLs at the psycopg driver.

    Hosting providers hand out postgres:// URLs, but SQLAlchemy needs
    postgresql://, and we use psycopg (not psycopg2).
    """
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg://", 1)
    if url.startswith("postgresql://") and "+psycopg" not in url:
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


def _create_engine(url: str) -> Engine:
    url = normalize_database_url(url)
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
        if ":memory:" in url:
            return create_engine(url, connect_args=connect_args, poolclass=StaticPool)
        return create_engine(url, connect_args=connect_args)
    return create_engine(url)


def create_remote_engine(url: str) -> Engine:
    """Create the engine backing the remote document store."""
    logger.info(f"Initializing remote store engine: {url.split('@')[-1]}")
    engine = _create_engine(url)
    SQLModel.metadata.create_all(engine, tables=[RemoteDocument.__table__])  # type: ignore[attr-defined]
    logger.success("Remote store tables ready")
    return engine


def create_local_engine(url: str) -> Engine:
    """Create the engine backing the on-device durable queue."""
    logger.info(f"Initializing local store engine: {url}")
    engine = _create_engine(url)
    SQLModel.metadata.create_all(engine, tables=[LocalEntry.__table__])  # type: ignore[attr-defined]
    logger.success("Local store tables ready")
    return engine
