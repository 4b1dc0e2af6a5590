"""
Database connection and session management for the LabFlow system
"""

import logging
from sqlalchemy import Enum, create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool
from typing import Generator, Optional

from .config import settings
from .exceptions import DatabaseException

logger = logging.getLogger(__name__)


def create_database_engine(database_url: Optional[str] = None):
    """Create database engine based on configuration"""

    database_url = database_url or settings.database_url

    # Special handling for SQLite
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=settings.database_echo
        )
    else:
        # PostgreSQL or other databases
        engine = create_engine(
            database_url,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_timeout=settings.database_pool_timeout,
            echo=settings.database_echo
        )

    return engine


# Create engine instance
engine = create_database_engine()

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Create declarative base
Base = declarative_base()


def get_database_session() -> Generator[Session, None, None]:
    """
    Dependency function to get database session
    Used with FastAPI Depends()
    """
    session = SessionLocal()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_tables(bind=None):
    """Create all tables in the database"""
    # Models register themselves on Base when imported
    from .. import models  # noqa: F401

    try:
        Base.metadata.create_all(bind=bind or engine)
    except Exception as e:
        raise DatabaseException(f"Failed to create tables: {str(e)}")


def drop_tables(bind=None):
    """Drop all tables from the database (use with caution)"""
    try:
        Base.metadata.drop_all(bind=bind or engine)
    except Exception as e:
        raise DatabaseException(f"Failed to drop tables: {str(e)}")


def get_session() -> Session:
    """Get a database session (for non-FastAPI usage)"""
    return SessionLocal()


class DatabaseManager:
    """Database management utilities"""

    def __init__(self, bind=None):
        self.engine = bind or engine

    def test_connection(self) -> bool:
        """Test database connection"""
        try:
            with self.engine.connect() as connection:
                connection.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error(f"Database connection error: {e}")
            return False

    def get_table_names(self) -> list:
        """Get list of all table names"""
        try:
            return inspect(self.engine).get_table_names()
        except Exception as e:
            raise DatabaseException(f"Failed to get table names: {str(e)}")


# Initialize database manager
db_manager = DatabaseManager()


def value_enum(enum_cls) -> Enum:
    """SQLAlchemy Enum type that stores the member values instead of their names"""
    return Enum(
        enum_cls,
        values_callable=lambda members: [member.value for member in members],
        name=enum_cls.__name__.lower(),
        validate_strings=True,
    )
