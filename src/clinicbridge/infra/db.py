"""Database access layer using psycopg2.

Provides:
- get_conn(): Get a connection with connect and statement timeouts applied
- txn(): Context manager for short, safe transactions
- fetchone/fetchall: Query helpers

Connection failures and statement timeouts surface as UpstreamUnavailable:
the store is a remote collaborator like any other.
"""

import os
from contextlib import contextmanager
from typing import Any, Iterator, Sequence

import psycopg2
from psycopg2.extensions import connection as PgConnection, cursor as PgCursor

from clinicbridge.errors import ConfigurationError, UpstreamUnavailable

DEFAULT_STORE_TIMEOUT = 5.0


def get_conn(
    dsn: str | None = None,
    timeout_seconds: float = DEFAULT_STORE_TIMEOUT,
) -> PgConnection:
    """Open a new database connection.

    Args:
        dsn: Connection string. Falls back to DATABASE_URL.
        timeout_seconds: Applied both as connect_timeout and statement_timeout.

    Returns:
        psycopg2 connection object.

    Raises:
        ConfigurationError: If no DSN is available.
        UpstreamUnavailable: On connection failure.
    """
    dsn = dsn or os.environ.get("DATABASE_URL")
    if not dsn:
        raise ConfigurationError("DATABASE_URL environment variable not set")

    try:
        return psycopg2.connect(
            dsn,
            connect_timeout=max(1, int(timeout_seconds)),
            options=f"-c statement_timeout={int(timeout_seconds * 1000)}",
        )
    except psycopg2.OperationalError as e:
        raise UpstreamUnavailable(f"store unreachable: {type(e).__name__}") from e


@contextmanager
def txn(
    conn: PgConnection | None = None,
    *,
    dsn: str | None = None,
    timeout_seconds: float = DEFAULT_STORE_TIMEOUT,
) -> Iterator[PgCursor]:
    """Context manager for a short, safe transaction.

    If conn is None, creates a new connection that is closed on exit.
    Commits on successful exit, rolls back on exception.

    Example:
        with txn() as cur:
            cur.execute("INSERT INTO t (x) VALUES (%s)", (1,))
    """
    owns_conn = conn is None
    if owns_conn:
        conn = get_conn(dsn, timeout_seconds)

    try:
        with conn.cursor() as cur:
            yield cur
        conn.commit()
    except psycopg2.OperationalError as e:
        # Includes statement_timeout cancellation (QueryCanceled)
        conn.rollback()
        raise UpstreamUnavailable(f"store operation failed: {type(e).__name__}") from e
    except Exception:
        conn.rollback()
        raise
    finally:
        if owns_conn:
            conn.close()


def fetchone(
    cur: PgCursor,
    query: str,
    params: Sequence[Any] | None = None,
) -> tuple[Any, ...] | None:
    """Execute query and fetch one row."""
    cur.execute(query, params)
    return cur.fetchone()


def fetchall(
    cur: PgCursor,
    query: str,
    params: Sequence[Any] | None = None,
) -> list[tuple[Any, ...]]:
    """Execute query and fetch all rows."""
    cur.execute(query, params)
    return cur.fetchall()
