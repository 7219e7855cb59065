"""Database client utilities for the CSV importer."""

import os
import logging
from typing import Optional, Tuple
from contextlib import contextmanager

from sqlalchemy import create_engine, func, select, table
from sqlalchemy.engine import Connection, Engine

log = logging.getLogger(__name__)

_engine: Optional[Engine] = None


def build_connection_string() -> str:
    """Build a connection string from environment variables.

    ``IMPORTER_DB_URL`` wins when set; otherwise a PostgreSQL URL is
    assembled from the ``POSTGRES_*`` variables.
    """
    url = os.environ.get("IMPORTER_DB_URL")
    if url:
        return url
    user = os.environ.get("POSTGRES_USER", "importer")
    password = os.environ.get("POSTGRES_PASSWORD", "importer")
    host = os.environ.get("POSTGRES_HOST", "localhost")
    port = os.environ.get("POSTGRES_PORT", "5432")
    db = os.environ.get("POSTGRES_DB", "importer")
    return f"postgresql+psycopg2://{user}:{password}@{host}:{port}/{db}"


def get_engine(connection_string: Optional[str] = None) -> Engine:
    """Create or return a cached SQLAlchemy engine.

    Args:
        connection_string: Optional explicit connection string.
            If not provided, builds one from environment variables and
            caches the resulting engine.

    Returns:
        SQLAlchemy Engine instance.
    """
    global _engine
    if _engine is not None and connection_string is None:
        return _engine

    cache = connection_string is None
    if connection_string is None:
        connection_string = build_connection_string()

    kwargs = {"pool_pre_ping": True}
    if not connection_string.startswith("sqlite"):
        kwargs.update(pool_size=5, max_overflow=10)
    engine = create_engine(connection_string, **kwargs)

    if cache:
        _engine = engine

    log.info("Database engine created for dialect '%s'", engine.dialect.name)
    return engine


def reset_engine() -> None:
    """Dispose and forget the cached engine."""
    global _engine
    if _engine is not None:
        _engine.dispose()
    _engine = None


@contextmanager
def _get_connection(engine: Optional[Engine] = None):
    """Context manager for database connections with automatic cleanup."""
    eng = engine or get_engine()
    conn = eng.connect()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


@contextmanager
def independent_connection(connection: Connection):
    """Open a second connection on the engine that owns ``connection``.

    Work done here commits on its own and is unaffected by a rollback of
    the transaction running on ``connection``.
    """
    with _get_connection(connection.engine) as conn:
        yield conn


def split_table_name(name: str) -> Tuple[Optional[str], str]:
    """Split ``schema.table`` into ``(schema, table)``; schema may be ``None``."""
    if "." in name:
        schema, _, table_name = name.rpartition(".")
        return schema, table_name
    return None, name


def table_row_count(connection: Connection, table_name: str) -> int:
    """Return ``COUNT(*)`` for a table, read on ``connection``."""
    schema, name = split_table_name(table_name)
    result = connection.execute(
        select(func.count()).select_from(table(name, schema=schema))
    )
    return int(result.scalar_one())


def quote_identifier(connection: Connection, name: str) -> str:
    """Quote an identifier for the dialect of ``connection``."""
    return connection.dialect.identifier_preparer.quote(name)
