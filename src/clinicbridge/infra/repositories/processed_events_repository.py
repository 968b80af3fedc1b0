"""Webhook receipts - dedupe by (source, external_id).

Same receipt pattern as every webhook: INSERT ... ON CONFLICT and look at
rowcount. A receipt marked 'failed' can be claimed again, so a redelivery
after an outage is processed instead of dropped. Failed receipts and
rejected payloads keep the payload verbatim for manual inspection.
"""

import json
from typing import Any

from psycopg2.extensions import cursor as PgCursor


def claim_event(cur: PgCursor, *, source: str, external_id: str) -> bool:
    """Insert receipt, or reclaim a failed one.

    Returns:
        False if this event was already received and did not fail.
    """
    cur.execute(
        """
        INSERT INTO processed_events (source, external_id)
        VALUES (%s, %s)
        ON CONFLICT (source, external_id) DO UPDATE
        SET status = 'processed', last_error = NULL, payload = NULL, updated_at = now()
        WHERE processed_events.status = 'failed'
        """,
        (source, external_id),
    )
    return cur.rowcount == 1


def mark_failed(
    cur: PgCursor,
    *,
    source: str,
    external_id: str,
    error: str,
    payload: Any = None,
) -> None:
    cur.execute(
        """
        UPDATE processed_events
        SET status = 'failed', last_error = %s, payload = %s::jsonb, updated_at = now()
        WHERE source = %s AND external_id = %s
        """,
        (error[:500], json.dumps(payload, default=str), source, external_id),
    )


def get_receipt(cur: PgCursor, *, source: str, external_id: str) -> dict[str, Any] | None:
    cur.execute(
        """
        SELECT status, last_error, payload
        FROM processed_events WHERE source = %s AND external_id = %s
        """,
        (source, external_id),
    )
    row = cur.fetchone()
    if row is None:
        return None
    return {"status": row[0], "last_error": row[1], "payload": row[2]}


def record_rejected_payload(cur: PgCursor, *, source: str, reason: str, payload: Any) -> None:
    cur.execute(
        """
        INSERT INTO rejected_payloads (source, reason, payload)
        VALUES (%s, %s, %s::jsonb)
        """,
        (source, reason[:500], json.dumps(payload, default=str)),
    )
