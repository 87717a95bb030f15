"""
Check the PostgreSQL database for the auth service before migrating.
Run once before `alembic upgrade head`: python scripts/init_postgres.py

Requires: PostgreSQL installed and running. Create user and database:

  sudo -u postgres psql
  CREATE USER learning WITH PASSWORD 'learning';
  CREATE DATABASE learning_platform OWNER learning;
  GRANT ALL PRIVILEGES ON DATABASE learning_platform TO learning;
  \q
"""

import logging
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError

from app.config import settings

logger = logging.getLogger("init_postgres")


def main() -> int:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s - %(message)s")
    url = settings.get_database_url()
    if not url.startswith("postgresql"):
        logger.info("Database URL is not PostgreSQL. Skipping.")
        return 0
    try:
        engine = create_engine(url)
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Cannot connect to PostgreSQL: {e.__class__.__name__}")
        logger.error(
            "Create the database first:\n"
            f"  psql -U postgres -c \"CREATE USER {settings.POSTGRES_USER} WITH PASSWORD '...';\"\n"
            f"  psql -U postgres -c \"CREATE DATABASE {settings.POSTGRES_DB} OWNER {settings.POSTGRES_USER};\""
        )
        return 1

    logger.info("PostgreSQL connection OK. Run `alembic upgrade head` to create the auth tables.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
