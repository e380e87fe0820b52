# core/db.py
"""
Database management for the compensation engine.
Single database, one session per unit of work.
"""
import logging
from contextlib import contextmanager
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session

from config import Config
from models.base import Base
from mlm_engine.errors import MLMError

logger = logging.getLogger(__name__)

# Database engines
_engine = None
_SessionFactory = None


def _configure_sqlite(engine):
    """
    Make SQLite transactions serialize writers.

    pysqlite starts transactions lazily, so two writers can both read and then
    deadlock on the upgrade to a write lock. Emitting BEGIN IMMEDIATE takes the
    write lock up front and lets the busy timeout do the waiting.
    """

    @event.listens_for(engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_db_engine(database_url: str):
    """Create an engine with the settings the engine needs for its store."""
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            echo=False,
            connect_args={"timeout": 30, "check_same_thread": False}
        )
        _configure_sqlite(engine)
    else:
        engine = create_engine(
            database_url,
            echo=False,
            pool_pre_ping=True
        )
    return engine


def get_engine():
    """Get or create database engine."""
    global _engine
    if _engine is None:
        database_url = Config.get(Config.DATABASE_URL, "sqlite:///mlm_engine.db")
        _engine = create_db_engine(database_url)
        logger.info(f"Database engine created: {database_url}")
    return _engine


def get_session_factory():
    """Get or create session factory."""
    global _SessionFactory
    if _SessionFactory is None:
        engine = get_engine()
        _SessionFactory = sessionmaker(bind=engine)
        logger.info("Session factory created")
    return _SessionFactory


def get_session() -> Session:
    """
    Get a new database session.

    Returns:
        Session instance
    """
    factory = get_session_factory()
    return factory()


@contextmanager
def get_db_session_ctx():
    """
    Context manager for database sessions.

    Usage:
        with get_db_session_ctx() as session:
            member = session.query(Member).first()
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception as e:
        session.rollback()
        if not isinstance(e, MLMError):
            logger.error(f"Database error: {e}")
        raise
    finally:
        session.close()


def reset_engine():
    """Dispose the cached engine so the next call picks up a new DATABASE_URL."""
    global _engine, _SessionFactory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


def setup_database():
    """Initialize database - create all tables."""
    logger.info("Setting up database...")
    import models  # noqa: F401  registers all mappers on Base.metadata
    engine = get_engine()
    Base.metadata.create_all(engine)
    logger.info("Database setup completed")


def drop_all_tables():
    """Drop all tables - USE WITH CAUTION!"""
    logger.warning("Dropping all tables...")
    engine = get_engine()
    Base.metadata.drop_all(engine)
    logger.info("All tables dropped")
