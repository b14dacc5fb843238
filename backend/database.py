"""
Database engine and session management.

DATABASE_URL selects the engine. SQLite is the development default; any
other SQLAlchemy URL (e.g. postgresql://) is used with pool_pre_ping.
"""

import logging
import os
from contextlib import contextmanager
from typing import Generator, Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from errors import ConsistencyError

logger = logging.getLogger(__name__)

DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./tracker.db")

if DATABASE_URL.startswith("sqlite"):
    engine = create_engine(
        DATABASE_URL,
        connect_args={"check_same_thread": False},
    )
else:
    engine = create_engine(
        DATABASE_URL,
        pool_pre_ping=True,
    )

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency yielding a session that is always closed."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """
    Commit everything done in the block as one transaction, or nothing.

    A version conflict on a versioned row (another request saved it first)
    surfaces as ConsistencyError; every other exception is re-raised after
    the rollback.
    """
    try:
        yield db
        db.commit()
    except StaleDataError as e:
        db.rollback()
        logger.error(f"Concurrent modification detected: {e}")
        raise ConsistencyError("The record was modified by another request; retry the operation") from e
    except Exception:
        db.rollback()
        raise
