"""Engine construction for the network store"""
import logging
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from . import config
from .models.tables import metadata

logger = logging.getLogger(__name__)


def create_db_engine(url: Optional[str] = None, pool_size: Optional[int] = None) -> Engine:
    """
    Create a pooled engine.

    Args:
        url: SQLAlchemy URL, defaults to config.DATABASE_URL
        pool_size: Connections kept in the pool, defaults to config.DB_POOL_SIZE

    Returns:
        Engine with its tables created
    """
    url = url or config.DATABASE_URL
    if url.startswith("sqlite"):
        # In-memory SQLite must share one connection or every checkout sees an empty DB
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url == "sqlite://":
            kwargs["poolclass"] = StaticPool
    else:
        kwargs = {
            "pool_size": pool_size or config.DB_POOL_SIZE,
            "pool_pre_ping": True,
            "connect_args": {"connect_timeout": config.DB_CONNECT_TIMEOUT},
        }
    engine = create_engine(url, **kwargs)
    metadata.create_all(engine)
    logger.info("Database ready at %s", engine.url.render_as_string(hide_password=True))
    return engine
