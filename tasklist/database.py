"""
Database engine, session factory and transaction scopes.

Services receive a Session and wrap every mutation in write_transaction so
that a unit of work either commits as a whole or leaves nothing behind.
"""

import logging
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from tasklist import config
from tasklist.errors import ConflictError, StoreError, TaskListError

logger = logging.getLogger(__name__)

Base = declarative_base()


def enable_sqlite_foreign_keys(engine) -> None:
    """Turn on foreign key enforcement for every new SQLite connection."""
    if engine.dialect.name != "sqlite":
        return

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


connect_args = {"check_same_thread": False} if config.DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(config.DATABASE_URL, connect_args=connect_args)
enable_sqlite_foreign_keys(engine)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db() -> None:
    """Create all tables that do not exist yet."""
    # Import models so they are registered on Base.metadata
    from tasklist import models  # noqa: F401

    logger.info(f"Initializing database schema on {engine.url.render_as_string(hide_password=True)}")
    Base.metadata.create_all(bind=engine)


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency yielding one session per request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def write_transaction(db: Session, commit: bool = True):
    """
    Atomic write scope.

    Args:
        db: Database session
        commit: Commit on success (default). Pass False when the caller owns
            an enclosing transaction; the scope then only flushes, and leaves
            rollback to the outer scope.

    Raises:
        ConflictError: the store rejected a uniqueness or foreign key constraint
        StoreError: any other persistence failure
    """
    try:
        yield db
        if commit:
            db.commit()
        else:
            db.flush()
    except TaskListError:
        if commit:
            db.rollback()
        raise
    except IntegrityError as e:
        if commit:
            db.rollback()
        logger.warning(f"Integrity error, transaction rolled back: {e.orig}")
        raise ConflictError("Operation violates a store constraint", {"detail": str(e.orig)}) from e
    except SQLAlchemyError as e:
        if commit:
            db.rollback()
        logger.error(f"Write transaction failed: {e}")
        raise StoreError(f"Database write failed: {e.__class__.__name__}", {"detail": str(e)}) from e


@contextmanager
def read_transaction(db: Session):
    """Read scope that surfaces persistence failures as StoreError."""
    try:
        yield db
    except SQLAlchemyError as e:
        logger.error(f"Read failed: {e}")
        raise StoreError(f"Database read failed: {e.__class__.__name__}", {"detail": str(e)}) from e
