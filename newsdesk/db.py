"""
Database connection and setup
SQLAlchemy engine and session factory
"""
import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from newsdesk.models import Base
from config.settings import settings

logger = logging.getLogger("db")

DATABASE_URL = settings.database_url

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    DATABASE_URL,
    connect_args=connect_args,  # SQLite sessions are shared across worker threads
    echo=False,
)

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db():
    """
    Initialize database - create all tables
    Safe to call multiple times (won't recreate existing tables)
    """
    Base.metadata.create_all(bind=engine)
    logger.info(f"Database initialized at: {DATABASE_URL}")


def get_db():
    """
    Get database session - use in FastAPI dependencies
    Yields a session and closes it when done
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
