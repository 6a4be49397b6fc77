"""
PostgreSQL connection helper for ragroute.

Query/response records and intent rules live in PostgreSQL; repositories
open a short-lived psycopg connection per operation.
"""

import psycopg
from loguru import logger

from ragroute_core.config import settings


def get_db_connection(dsn: str | None = None) -> psycopg.Connection:
    """
    Open a PostgreSQL connection.

    Use as a context manager so the connection is closed on exit:

        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT 1")

    Args:
        dsn: Connection string (defaults to POSTGRES_DSN).
    """
    try:
        conn = psycopg.connect(dsn or settings.POSTGRES_DSN)
        logger.debug("Connected to PostgreSQL")
        return conn
    except Exception as e:
        logger.error(f"Failed to connect to PostgreSQL: {e}")
        raise
