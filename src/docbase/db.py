"""
Postgres plumbing for the JSONB document store.

Statements run through short-lived psycopg connections with dict rows. Test
fixtures pin a single connection with set_connection_override() so every
statement a test issues shares one transaction, which the fixture rolls back
afterwards.
"""

from contextlib import contextmanager
from typing import Any

import psycopg
from psycopg.rows import dict_row

from docbase.config import config
from docbase.errors import StoreUnavailable

# =============================================================================
# Pinned connection (tests)
# =============================================================================

_pinned: psycopg.Connection | None = None


def set_connection_override(conn: psycopg.Connection) -> None:
    """Route every statement through ``conn`` until cleared."""
    global _pinned
    _pinned = conn


def clear_connection_override() -> None:
    global _pinned
    _pinned = None


# =============================================================================
# Connections
# =============================================================================


@contextmanager
def get_connection(url: str = None):
    """
    Yield a connection to ``url`` (default: DATABASE_URL).

    A fresh connection commits when the block exits cleanly, rolls back when
    it raises, and is always closed. A pinned connection is yielded untouched;
    its owner decides when the transaction ends.

    Raises:
        StoreUnavailable: no URL configured, or the server refused us
    """
    if _pinned is not None:
        yield _pinned
        return

    url = url or config.database_url
    if not url:
        raise StoreUnavailable("DATABASE_URL is not configured")

    try:
        conn = psycopg.connect(url)
    except psycopg.OperationalError as exc:
        raise StoreUnavailable(f"Cannot connect to Postgres: {exc}") from exc
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


@contextmanager
def get_cursor(url: str = None):
    with get_connection(url) as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            yield cur


# =============================================================================
# Statements
# =============================================================================


def execute(statement, params: tuple = None, url: str = None) -> int:
    """Run a statement; returns the affected row count."""
    with get_cursor(url) as cur:
        cur.execute(statement, params)
        return cur.rowcount


def fetch_one(statement, params: tuple = None, url: str = None) -> dict[str, Any] | None:
    with get_cursor(url) as cur:
        cur.execute(statement, params)
        return cur.fetchone()


def fetch_all(statement, params: tuple = None, url: str = None) -> list[dict[str, Any]]:
    with get_cursor(url) as cur:
        cur.execute(statement, params)
        return cur.fetchall()
