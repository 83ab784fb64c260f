"""
Database preflight check to ensure connectivity before starting the application.
"""
import sys
import time
from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError

from rfpgate.core.config import settings
from rfpgate.core.logging import get_logger

logger = get_logger("db_preflight")


def run_db_preflight(retries: int = 5, delay: int = 2) -> bool:
    """
    Connect and run ``SELECT 1``, retrying while the database starts up.
    Exits the process when the database stays unreachable.
    """
    db_url = settings.DATABASE_URL
    if not db_url:
        logger.error("CRITICAL: DATABASE_URL is not configured!")
        sys.exit(1)

    # Never log credentials
    safe_url = db_url.split("@")[-1] if "@" in db_url else "configured URL"
    logger.info(f"Running DB preflight check against: {safe_url}")

    if db_url.startswith("sqlite"):
        engine = create_engine(db_url)
    else:
        engine = create_engine(db_url, connect_args={"connect_timeout": 5})

    for attempt in range(1, retries + 1):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info("Database connection successful.")
            return True
        except OperationalError as e:
            err_msg = str(e)

            if "password authentication failed" in err_msg.lower():
                logger.error(
                    f"FATAL: database authentication failed for user {settings.POSTGRES_USER} "
                    f"on {settings.POSTGRES_DB}. Check POSTGRES_* / DATABASE_URL."
                )
                sys.exit(1)

            if attempt < retries:
                logger.warning(f"Attempt {attempt}/{retries} failed: {err_msg}. Retrying in {delay}s...")
                time.sleep(delay)
            else:
                logger.error(f"CRITICAL: Could not connect to database after {retries} attempts: {err_msg}")
                sys.exit(1)
    return False


if __name__ == "__main__":
    run_db_preflight()
