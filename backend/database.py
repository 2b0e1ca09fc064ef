import os
import logging

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

from config import DATABASE_URL

logger = logging.getLogger(__name__)

Base = declarative_base()


def make_engine(url: str = DATABASE_URL) -> Engine:
    """Build the engine for a database URL.

    SQLite runs with foreign keys enforced so conversation deletes cascade;
    an in-memory URL shares one connection across threads.
    """
    if url.startswith("sqlite"):
        args = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            args["poolclass"] = StaticPool
        sqlite_engine = create_engine(url, echo=False, **args)

        @event.listens_for(sqlite_engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return sqlite_engine

    # PostgreSQL: pooled connections, recycled before the server drops them
    return create_engine(
        url,
        echo=False,
        pool_size=5,
        max_overflow=10,
        pool_timeout=30,
        pool_recycle=1800,
        pool_pre_ping=True,
    )


try:
    engine = make_engine()
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
except Exception as e:
    logger.error(f"Failed to create engine: {e}")
    raise e


def get_db():
    """FastAPI dependency — yields a database session and closes it after use."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind: Engine | None = None):
    """Create the data/ directory for a file-backed SQLite URL, then all tables."""
    if bind is None and DATABASE_URL.startswith("sqlite:///./"):
        os.makedirs("data", exist_ok=True)

    # Registers every model with Base.metadata
    import models  # noqa: F401

    try:
        Base.metadata.create_all(bind=bind or engine)
        logger.info("Database initialized successfully.")
    except Exception as e:
        # A read-only DB role cannot CREATE; the app still serves on existing tables
        logger.error(f"Error during database initialization: {e}")
