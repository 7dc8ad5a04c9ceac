"""Database connection and session management.

Provides the SQLAlchemy engine and session factory. The engine is created
lazily so importing the package never needs a database driver.
"""

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import LearningConfig
from ..exceptions import StorageError

logger = logging.getLogger(__name__)

# Session factory, bound on first use or by configure_database()
SessionLocal = sessionmaker(autocommit=False, autoflush=False)

_engine: Optional[Engine] = None


def create_engine_from_url(url: str, echo: bool = False) -> Engine:
    """Create an engine with pooling suited to the backend.

    PostgreSQL gets pre-ping and a bounded pool. In-memory SQLite shares one
    connection across threads so every session sees the same database.

    Example:
        >>> engine = create_engine_from_url("sqlite://")
    """
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, echo=echo, **kwargs)

    # pool_pre_ping: Check connection health before using
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
        echo=echo,
    )


def configure_database(url: str) -> Engine:
    """Create the engine for ``url`` and bind SessionLocal to it."""
    global _engine
    _engine = create_engine_from_url(url)
    SessionLocal.configure(bind=_engine)
    logger.info("database_configured", extra={"backend": _engine.url.get_backend_name()})
    return _engine


def get_engine() -> Engine:
    """Return the configured engine, creating it from DATABASE_URL if needed."""
    if _engine is None:
        configure_database(LearningConfig.from_env().database_url)
    return _engine


def get_session_factory() -> sessionmaker:
    """Session factory bound to the configured engine."""
    get_engine()
    return SessionLocal


@contextmanager
def session_scope(factory: Optional[sessionmaker] = None) -> Iterator[Session]:
    """Transactional scope: commit on success, rollback on error, always close.

    Args:
        factory: Session factory (default: SessionLocal)

    Raises:
        StorageError: On any database error, after rollback

    Example:
        >>> with session_scope(factory) as db:
        ...     SkillRepository(db).get(skill_id)
    """
    db = (factory or get_session_factory())()
    try:
        yield db
        db.commit()
    except SQLAlchemyError as e:
        logger.error(f"Database session error: {e}")
        db.rollback()
        raise StorageError(str(e)) from e
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db(engine: Optional[Engine] = None):
    """Initialize database tables.

    Creates all tables defined in models if they don't exist.
    For production, use Alembic migrations instead.
    """
    from .models import Base
    Base.metadata.create_all(bind=engine or get_engine())
    logger.info("Database tables initialized")


def check_connection(engine: Optional[Engine] = None) -> bool:
    """Test database connection.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        with (engine or get_engine()).connect() as conn:
            conn.execute(text("SELECT 1"))
        logger.info("Database connection successful")
        return True
    except Exception as e:
        logger.error(f"Database connection failed: {e}")
        return False
