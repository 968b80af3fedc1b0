"""PostgreSQL LISTEN/NOTIFY transport for the realtime fan-out.

Row-change triggers (migration 001) publish JSON on the channel:
{"op": "INSERT|UPDATE|DELETE", "table": ..., "id": ..., "user_id": ...,
 "new": {...}, "old": {...}} or, above the NOTIFY size limit,
the same without "new"/"old" and with "truncated": true.
"""

from __future__ import annotations

import json
import select
from typing import Any, Iterator

import psycopg2
from psycopg2 import sql
from psycopg2.extensions import ISOLATION_LEVEL_AUTOCOMMIT, connection as PgConnection

from clinicbridge.errors import UpstreamUnavailable
from clinicbridge.infra.time import utc_now
from clinicbridge.models import ChangeEvent
from clinicbridge.observability.logging import get_logger
from clinicbridge.observability.redaction import safe_log_context

logger = get_logger(__name__)

# Channel the row-change triggers of migration 001 notify on.
CHANGES_CHANNEL = "bridge_changes"

_KINDS = {"INSERT": "created", "UPDATE": "updated", "DELETE": "deleted"}


def parse_notification(payload: str) -> ChangeEvent | None:
    """Decode one NOTIFY payload. Returns None for payloads we cannot read."""
    try:
        data: Any = json.loads(payload)
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    kind = _KINDS.get(str(data.get("op", "")).upper())
    table = data.get("table")
    if kind is None or not table:
        return None

    new = data.get("new")
    old = data.get("old")
    record_id = data.get("id")
    if data.get("truncated"):
        stub = {"id": record_id, "user_id": data.get("user_id")}
        if kind == "deleted":
            old = stub
        else:
            new = stub

    return ChangeEvent(
        kind=kind,
        table=str(table),
        record_id=str(record_id) if record_id is not None else None,
        new=new if isinstance(new, dict) else None,
        old=old if isinstance(old, dict) else None,
        received_at=utc_now(),
    )


class PgNotifyTransport:
    def __init__(
        self,
        dsn: str,
        *,
        poll_interval: float = 1.0,
        connect_timeout: float = 5.0,
    ) -> None:
        self._dsn = dsn
        self._channel = CHANGES_CHANNEL
        self._poll_interval = poll_interval
        self._connect_timeout = connect_timeout
        self._conn: PgConnection | None = None
        self._closed = False

    def __repr__(self) -> str:
        return f"PgNotifyTransport(channel={self._channel!r})"

    def connect(self) -> None:
        try:
            conn = psycopg2.connect(self._dsn, connect_timeout=max(1, int(self._connect_timeout)))
            conn.set_isolation_level(ISOLATION_LEVEL_AUTOCOMMIT)
            with conn.cursor() as cur:
                cur.execute(sql.SQL("LISTEN {}").format(sql.Identifier(self._channel)))
        except psycopg2.OperationalError as e:
            raise UpstreamUnavailable(f"store unreachable: {type(e).__name__}") from e
        self._conn = conn
        self._closed = False

    def iter_events(self) -> Iterator[ChangeEvent]:
        conn = self._conn
        if conn is None:
            raise RuntimeError("transport is not connected")

        while not self._closed:
            try:
                ready, _, _ = select.select([conn], [], [], self._poll_interval)
                if not ready:
                    continue
                conn.poll()
            except (psycopg2.Error, OSError, ValueError):
                if self._closed:
                    return
                raise

            while conn.notifies:
                notify = conn.notifies.pop(0)
                event = parse_notification(notify.payload)
                if event is None:
                    logger.warning(
                        "unreadable change notification",
                        extra={"extra_fields": safe_log_context(channel=notify.channel)},
                    )
                    continue
                yield event

    def close(self) -> None:
        self._closed = True
        if self._conn is not None and not self._conn.closed:
            self._conn.close()
