"""
Database connection management.

Provides the engine, session factory and declarative base shared by every
service. Pool settings apply to server databases; SQLite gets a plain engine.
"""
from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker
from core.config import settings
from core.logging import setup_logging
import logging

logger = logging.getLogger(__name__)


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_size": settings.DB_POOL_SIZE,  # Number of connections to maintain
        "max_overflow": settings.DB_MAX_OVERFLOW,  # Additional connections beyond pool_size
        "pool_timeout": settings.DB_POOL_TIMEOUT,  # Seconds to wait for connection
        "pool_recycle": settings.DB_POOL_RECYCLE,  # Recycle connections after this many seconds
        "pool_pre_ping": True,  # Verify connections before using
    }


def configure_sqlite(sqlite_engine):
    """
    Let SQLAlchemy own transaction boundaries on pysqlite.

    The driver's implicit BEGIN handling breaks SAVEPOINT, which the
    per-trigger isolation in auto-trigger evaluation relies on.
    """
    @event.listens_for(sqlite_engine, "connect")
    def _disable_driver_transactions(dbapi_conn, connection_record):
        dbapi_conn.isolation_level = None

    @event.listens_for(sqlite_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return sqlite_engine


engine = create_engine(
    settings.DATABASE_URL,
    echo=settings.DB_ECHO or settings.DEBUG,
    **_engine_kwargs(settings.DATABASE_URL),
)
if engine.dialect.name == "sqlite":
    configure_sqlite(engine)

# Session factory
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    expire_on_commit=False,  # Prevent lazy loading issues
)

Base = declarative_base()


@event.listens_for(engine, "connect")
def on_connect(dbapi_conn, connection_record):
    """Set connection-level settings."""
    logger.debug("New database connection established")


def init_db() -> None:
    """Engine start-up: configure logging, then create all tables known to the ORM metadata."""
    setup_logging()

    import models  # noqa: F401  (registers mappers on Base.metadata)

    Base.metadata.create_all(bind=engine)
    logger.info(f"Database initialized ({engine.dialect.name})")


def get_db():
    """
    Request-scoped session generator.

    Commits when the caller finishes cleanly, rolls back on any exception.
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception as e:
        db.rollback()
        # Only log actual database errors, not HTTP exceptions
        from fastapi import HTTPException
        if not isinstance(e, HTTPException):
            logger.error(f"Database transaction error: {e}")
        raise
    finally:
        db.close()


def check_db_connection() -> bool:
    """
    Check if database connection is healthy.

    Returns:
        True if connection is healthy, False otherwise
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database connection check failed: {e}")
        return False
