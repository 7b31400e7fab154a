import logging

from config import settings
from sqlalchemy import Column, DateTime, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.sql import func

logger = logging.getLogger(__name__)


def _engine_options() -> dict:
    """Pool options for the configured backend"""
    if settings.is_sqlite:
        # Single shared connection so in-memory databases survive across sessions
        return {
            "poolclass": StaticPool,
            "connect_args": {"check_same_thread": False},
        }

    return {
        "poolclass": QueuePool,
        "pool_size": 20,
        "max_overflow": 40,
        "pool_pre_ping": True,
        "pool_recycle": 3600,  # Recycle connections every hour
        "pool_timeout": 30,
    }


engine = create_engine(
    settings.database_url,
    echo=settings.debug,
    future=True,
    **_engine_options(),
)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    expire_on_commit=False,  # Keep objects accessible after commit
)

# Base class for all models
Base = declarative_base()


class TimestampMixin:
    """Mixin for created_at and updated_at timestamps"""

    created_at = Column(DateTime, default=func.now(), nullable=False)
    updated_at = Column(
        DateTime, default=func.now(), onupdate=func.now(), nullable=False
    )


@event.listens_for(Engine, "connect")
def set_connection_settings(dbapi_connection, connection_record):
    """Per-connection settings for the configured backend"""
    if settings.is_sqlite:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()
        return

    if settings.database_url.startswith("postgresql"):
        try:
            with dbapi_connection.cursor() as cursor:
                cursor.execute("SET statement_timeout = '30s'")
                cursor.execute("SET lock_timeout = '10s'")
                cursor.execute("SET idle_in_transaction_session_timeout = '60s'")
                dbapi_connection.commit()
        except Exception as e:
            logger.warning(f"Could not set PostgreSQL settings: {str(e)}")


def get_db() -> Session:
    """
    Dependency for getting database session
    Includes proper error handling and cleanup
    """
    db = SessionLocal()
    try:
        yield db
    except Exception as e:
        logger.error(f"Database error: {str(e)}")
        db.rollback()
        raise
    finally:
        db.close()


def init_db():
    """
    Create tables and seed the default threshold configuration.
    Seeding only inserts keys that are missing, so it is safe on every start.
    """
    # Register every model on Base.metadata before create_all
    import models  # noqa: F401
    from services.threshold_service import threshold_service

    try:
        Base.metadata.create_all(bind=engine)

        db = SessionLocal()
        try:
            seeded = threshold_service.seed_defaults(db)
            if seeded:
                logger.info(f"Seeded {seeded} default thresholds")
        finally:
            db.close()

        logger.info("✅ Database initialization completed")

    except Exception as e:
        logger.error(f"❌ Database initialization failed: {str(e)}")
        raise
