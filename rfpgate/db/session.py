"""
Database session management with SQLAlchemy.
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session, declarative_base
from typing import Generator
from contextlib import contextmanager

from rfpgate.core.config import settings
from rfpgate.core.logging import get_logger

logger = get_logger(__name__)


def _engine_options(url: str) -> dict:
    """Pool settings for server databases; SQLite (tests, local) takes none."""
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_pre_ping": True,
        "pool_size": 10,
        "max_overflow": 20,
        "pool_timeout": 30,
        "pool_recycle": 1800,
    }


engine = create_engine(settings.DATABASE_URL, **_engine_options(settings.DATABASE_URL))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """Dependency for getting database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_context() -> Generator[Session, None, None]:
    """Context manager for database session."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


# Tables the access engine cannot run without.
REQUIRED_TABLES = (
    "users", "rfps", "documents", "rfp_nda_access",
    "company_ndas", "rfp_access", "nda_audit_trail",
)


def init_db():
    """
    Initialize database connection and run startup tasks.

    Schema is managed by Alembic migrations, NOT create_all().
    Run `alembic upgrade head` before first startup.

    Startup order:
    1. Preflight check (validates DB connectivity)
    2. Verify schema exists
    3. Seed demo data ONLY if SEED_DEMO=true
    """
    from sqlalchemy import inspect, text

    from rfpgate.db.preflight import run_db_preflight
    run_db_preflight()

    from rfpgate.db import models  # noqa

    inspector = inspect(engine)
    existing_tables = inspector.get_table_names()
    missing = [t for t in REQUIRED_TABLES if t not in existing_tables]

    if missing:
        logger.error(f"Database schema missing tables: {missing}. Run `alembic upgrade head`.")
        if settings.DEBUG:
            logger.warning("DEBUG=true: auto-creating tables (NOT for production!)")
            Base.metadata.create_all(bind=engine)
        else:
            return
    else:
        logger.info(f"Database schema verified: {len(existing_tables)} tables found")

    if 'alembic_version' in existing_tables:
        with engine.connect() as conn:
            version = conn.execute(text("SELECT version_num FROM alembic_version")).scalar()
            logger.info(f"Alembic migration version: {version}")
    else:
        logger.warning("alembic_version table not found - migrations may not have been run")

    if settings.SEED_DEMO:
        from rfpgate.db.seed import seed_demo_data
        logger.info("SEED_DEMO=true: seeding demo portal")
        with get_db_context() as db:
            seed_demo_data(db)
