"""Database URL helpers for Alembic migrations.

Kept apart from env.py so they can be tested without an alembic context.
The bridge reads DATABASE_URL as a psycopg2 DSN; Alembic needs a
SQLAlchemy URL naming the psycopg2 driver.
"""

from __future__ import annotations

import os

from psycopg2.extensions import parse_dsn
from sqlalchemy.engine import URL

DRIVER = "postgresql+psycopg2"

_SCHEMES = ("postgres://", "postgresql://")


def dsn_to_sqlalchemy_url(dsn: str) -> str:
    """Convert a psycopg2 DSN (URL or key=value form) to a SQLAlchemy URL."""
    for scheme in _SCHEMES:
        if dsn.startswith(scheme):
            return f"{DRIVER}://{dsn[len(scheme):]}"
    if "://" in dsn:
        return dsn

    params = parse_dsn(dsn)
    host = params.pop("host", None)
    port = params.pop("port", None)
    query = {}
    # Unix socket directories go in the query string
    if host and host.startswith("/"):
        query["host"] = host
        host = None
    url = URL.create(
        DRIVER,
        username=params.pop("user", None),
        password=params.pop("password", None),
        host=host,
        port=int(port) if port else None,
        database=params.pop("dbname", None),
        query=query,
    )
    return url.render_as_string(hide_password=False)


def get_database_url() -> str:
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is required to run migrations")
    return dsn_to_sqlalchemy_url(url)
