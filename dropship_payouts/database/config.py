"""
Database configuration and session handling.
"""
import logging
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import QueuePool

from dropship_payouts.config import (
    DATABASE_URL, DB_POOL_SIZE, DB_MAX_OVERFLOW, DB_POOL_TIMEOUT, DB_POOL_RECYCLE
)
from dropship_payouts.database.models import Base

logger = logging.getLogger(__name__)


def create_db_engine(db_url: str = DATABASE_URL):
    """Create SQLAlchemy engine, with connection pooling for server databases."""
    try:
        if db_url.startswith('sqlite'):
            return create_engine(
                db_url,
                connect_args={'check_same_thread': False},
                echo=False
            )
        return create_engine(
            db_url,
            poolclass=QueuePool,
            pool_size=DB_POOL_SIZE,
            max_overflow=DB_MAX_OVERFLOW,
            pool_timeout=DB_POOL_TIMEOUT,
            pool_recycle=DB_POOL_RECYCLE,
            pool_pre_ping=True,
            echo=False  # Set to True for SQL query logging
        )
    except Exception as e:
        logger.error(f"Error creating database engine: {e}")
        raise


# Create engine and session factory
engine = create_db_engine()
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """Get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None):
    """Initialize the database by creating all tables."""
    try:
        Base.metadata.create_all(bind or engine)
        logger.info("Database tables created successfully")
    except Exception as e:
        logger.error(f"Error initializing database: {e}")
        raise
