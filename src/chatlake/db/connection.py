"""
Database connection management for ChatLake.

Provides database session management, connection handling, and transaction support.
"""

import logging
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import Session, sessionmaker

from chatlake.config import settings
from chatlake.models.db import Base

logger = logging.getLogger(__name__)


def _use_json_on_sqlite(target, connection, **kw) -> None:
    """Replace JSONB with JSON when creating tables on SQLite."""
    from sqlalchemy import JSON
    from sqlalchemy.dialects import postgresql

    if connection.dialect.name != "sqlite":
        return
    for table in target.tables.values():
        for column in table.columns:
            if isinstance(column.type, postgresql.JSONB):
                column.type = JSON()


event.listen(Base.metadata, "before_create", _use_json_on_sqlite)


def enable_sqlite_savepoints(sqlite_engine) -> None:
    """
    Let SQLAlchemy own BEGIN on pysqlite connections.

    pysqlite's implicit transaction handling breaks SAVEPOINT, which the
    insert-if-absent primitives rely on.
    """

    @event.listens_for(sqlite_engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(sqlite_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


# Create engine instance (singleton pattern)
if settings.database_url.startswith("sqlite"):
    engine = create_engine(
        settings.database_url,
        echo=False,
        connect_args={"check_same_thread": False},
        pool_pre_ping=True,
    )
    enable_sqlite_savepoints(engine)
else:
    engine = create_engine(
        settings.database_url,
        echo=False,
        pool_pre_ping=True,
    )

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)


def get_session() -> Session:
    """
    Get a new database session.

    Returns:
        Session: A new SQLAlchemy session; the caller owns commit/rollback/close
    """
    return SessionLocal()


def get_db() -> Generator[Session, None, None]:
    """
    Dependency for FastAPI to get database sessions with automatic cleanup.

    Yields:
        Session: A SQLAlchemy session

    Example (FastAPI):
        >>> @app.get("/batches")
        >>> def list_batches(db: Session = Depends(get_db)):
        >>>     return db.query(ImportBatch).all()
    """
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def db_session() -> Generator[Session, None, None]:
    """
    Context manager for database sessions with automatic cleanup.

    Commits on success, rolls back on exception.

    Example:
        >>> with db_session() as db:
        >>>     batch = db.query(ImportBatch).first()
    """
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def transaction() -> Generator[Session, None, None]:
    """
    Context manager for one explicit unit of work.

    Example:
        >>> with transaction() as db:
        >>>     ProjectService(db).create("Home lab")
        >>>     # Commits on success, rolls back on exception
    """
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db() -> None:
    """Create all tables that do not exist yet."""
    Base.metadata.create_all(bind=engine)
    logger.info(f"Database schema ensured at {engine.url.render_as_string(hide_password=True)}")


def check_connection() -> bool:
    """
    Check if database connection is working.

    Returns:
        bool: True if connection successful, False otherwise
    """
    try:
        with db_session() as db:
            db.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database connection failed: {e}")
        return False
