from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from typing import Optional

import psycopg2

from config.settings import settings
from services.errors import ConfigurationError

logger = logging.getLogger(__name__)


def _pg_dsn() -> Optional[str]:
    host = os.environ.get("PGHOST") or settings.db_host
    db = os.environ.get("PGDATABASE") or settings.db_name
    user = os.environ.get("PGUSER") or settings.db_user
    pwd = os.environ.get("PGPASSWORD") or settings.db_password
    port = os.environ.get("PGPORT") or str(settings.db_port or 5432)
    sslmode = os.environ.get("PGSSLMODE")

    if not host:
        return None

    parts = [f"host={host}", f"port={port}"]
    if db:
        parts.append(f"dbname={db}")
    if user:
        parts.append(f"user={user}")
    if pwd:
        parts.append(f"password={pwd}")
    if sslmode:
        parts.append(f"sslmode={sslmode}")
    return " ".join(parts)


def database_configured() -> bool:
    return _pg_dsn() is not None


@contextmanager
def get_conn():
    """Yield a PostgreSQL connection using the settings/environment DSN.

    The connection runs in transaction mode; the caller commits. Anything
    left uncommitted is rolled back when the block exits with an error.
    """

    dsn = _pg_dsn()
    if not dsn:
        raise ConfigurationError(
            "PostgreSQL connection parameters are not configured. "
            "Set DB_HOST/DB_NAME/DB_USER/DB_PASSWORD to continue."
        )

    conn = psycopg2.connect(dsn)
    try:
        yield conn
    except Exception:
        conn.rollback()
        raise
    finally:
        try:
            conn.close()
        except psycopg2.Error:  # pragma: no cover - close on a broken socket
            logger.debug("Ignoring error while closing PostgreSQL connection", exc_info=True)
