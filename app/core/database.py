"""
Database configuration and session management
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool
from typing import Generator
import os
import logging

logger = logging.getLogger(__name__)

# Create Base class for models
Base = declarative_base()

# Lazy initialization for engine and session
_engine = None
_SessionLocal = None


def get_database_url() -> str:
    """Get database URL from environment, falling back to settings"""
    url = os.environ.get("DATABASE_URL", "")

    if not url:
        from app.core.config import settings
        url = settings.DATABASE_URL

    return url


def get_engine():
    """Get or create SQLAlchemy engine lazily"""
    global _engine

    if _engine is None:
        database_url = get_database_url()
        if not database_url:
            raise ValueError("DATABASE_URL is not configured")

        echo = os.environ.get("DEBUG", "false").lower() == "true"
        logger.info("Creating database engine...")
        logger.info(f"Database URL pattern: {database_url.split('@')[-1][:50]}")

        if database_url.startswith("sqlite"):
            # In-memory SQLite must share one connection across threads
            kwargs = {"connect_args": {"check_same_thread": False}}
            if ":memory:" in database_url:
                kwargs["poolclass"] = StaticPool
            _engine = create_engine(database_url, echo=echo, **kwargs)
        else:
            _engine = create_engine(
                database_url,
                pool_pre_ping=True,
                pool_size=5,
                max_overflow=10,
                pool_timeout=30,
                pool_recycle=1800,  # Recycle connections after 30 min
                echo=echo,
            )
        logger.info("Database engine created successfully")

    return _engine


def get_session_local():
    """Get or create SessionLocal lazily"""
    global _SessionLocal

    if _SessionLocal is None:
        _SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            bind=get_engine()
        )

    return _SessionLocal


def get_db() -> Generator[Session, None, None]:
    """
    Dependency function to get database session.
    Use this in FastAPI route dependencies.

    Example:
        @router.get("/commission/headers")
        def list_headers(db: Session = Depends(get_db)):
            return db.query(CommissionHeader).all()
    """
    SessionLocal = get_session_local()
    db = SessionLocal()
    try:
        yield db
    except Exception as e:
        logger.error(f"Database session error: {e}")
        db.rollback()
        raise
    finally:
        db.close()


def init_db():
    """Initialize database - creates tables if needed"""
    # Register models on Base.metadata
    import app.models  # noqa: F401

    try:
        engine = get_engine()
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables initialized")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise
