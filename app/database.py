"""
Database Configuration and Session Management
Check-in records live in PostgreSQL (SQLite for local runs and tests)
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from app.config import settings
import structlog

logger = structlog.get_logger(__name__)

engine = None
SessionLocal = None


def normalize_database_url(database_url: str) -> str:
    """Route plain postgresql:// URLs to the psycopg3 driver"""
    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+psycopg://", 1)
    return database_url


def init_db(database_url=None):
    """Initialize database connection; leaves SessionLocal as None when unconfigured"""
    global engine, SessionLocal

    database_url = database_url or settings.database_url
    if not database_url:
        logger.warning("database_not_configured", reason="DATABASE_URL missing - check-in persistence disabled")
        return

    database_url = normalize_database_url(database_url)

    logger.info("database_connecting")
    engine_options = {"pool_pre_ping": True}
    if not database_url.startswith("sqlite"):
        engine_options.update(pool_size=5, max_overflow=10)

    engine = create_engine(database_url, **engine_options)

    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    logger.info("database_connected", dialect=engine.dialect.name)


# Base class for all models
Base = declarative_base()
