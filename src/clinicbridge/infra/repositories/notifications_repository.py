"""Notifications written by the bridge for human operators.

Rows land in the clinic's notifications table, whose change trigger feeds
the realtime fan-out.
"""

import json
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from clinicbridge.models import NotificationEvent


def insert_notification(
    cur: PgCursor,
    *,
    user_id: str | None,
    payload: dict[str, Any],
) -> NotificationEvent:
    cur.execute(
        """
        INSERT INTO notifications (user_id, type, title, message, metadata)
        VALUES (%s, %s, %s, %s, %s::jsonb)
        RETURNING id, created_at
        """,
        (
            user_id,
            payload.get("type", "system"),
            payload.get("title", ""),
            payload.get("message", ""),
            json.dumps(payload.get("metadata") or {}, default=str),
        ),
    )
    row = cur.fetchone()
    return NotificationEvent(id=row[0], user_id=user_id, payload=payload, created_at=row[1])
