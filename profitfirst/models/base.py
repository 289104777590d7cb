"""
Engine, session factory and declarative base for the cache and product-cost tables
"""
import os

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import NullPool

from profitfirst.config import get_settings
from profitfirst.utils.logger import log

settings = get_settings()


def _absolute_sqlite_url(url: str) -> str:
    # sqlite:///./x.db is relative to the cwd at connect time
    prefix = "sqlite:///"
    if url.startswith(prefix) and not url.startswith(prefix + "/"):
        return prefix + os.path.abspath(url[len(prefix):])
    return url


def build_engine(url: str) -> Engine:
    url = _absolute_sqlite_url(url)
    if url.startswith("sqlite"):
        # Cache writes arrive from asyncio.to_thread workers
        return create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": 60},
            poolclass=NullPool,
        )
    return create_engine(url, pool_pre_ping=True, pool_size=3, max_overflow=5, pool_recycle=300)


engine = build_engine(settings.database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def init_db():
    """Create the cached_data and product_costs tables if they do not exist."""
    import profitfirst.models  # noqa: F401  registers the tables on Base.metadata
    Base.metadata.create_all(bind=engine)
    log.info(f"Database ready: {', '.join(sorted(Base.metadata.tables))}")
