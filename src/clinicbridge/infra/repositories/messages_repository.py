"""Messages repository. Deduplicated by provider_message_id."""

from typing import Any

from psycopg2.extensions import cursor as PgCursor


def insert_message(
    cur: PgCursor,
    *,
    conversation_id: int | None,
    contact_phone: str,
    direction: str,
    body: str | None,
    media_url: str | None,
    provider_message_id: str | None,
    status: str,
) -> bool:
    """Insert a message row.

    Returns:
        False if a row with the same provider_message_id already exists.
    """
    cur.execute(
        """
        INSERT INTO messages (
            conversation_id, contact_phone, direction, body,
            media_url, provider_message_id, status
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s)
        ON CONFLICT (provider_message_id) DO NOTHING
        """,
        (conversation_id, contact_phone, direction, body, media_url, provider_message_id, status),
    )
    return cur.rowcount == 1


def update_status_by_provider_id(cur: PgCursor, *, provider_message_id: str, status: str) -> bool:
    cur.execute(
        """
        UPDATE messages SET status = %s, updated_at = now()
        WHERE provider_message_id = %s
        """,
        (status, provider_message_id),
    )
    return cur.rowcount > 0


def update_delivery(
    cur: PgCursor,
    *,
    message_id: int,
    status: str,
    provider_message_id: str | None,
) -> None:
    cur.execute(
        """
        UPDATE messages
        SET status = %s,
            provider_message_id = COALESCE(%s, provider_message_id),
            updated_at = now()
        WHERE id = %s
        """,
        (status, provider_message_id, message_id),
    )


def get_by_provider_id(cur: PgCursor, *, provider_message_id: str) -> dict[str, Any] | None:
    cur.execute(
        """
        SELECT id, conversation_id, direction, status
        FROM messages WHERE provider_message_id = %s
        """,
        (provider_message_id,),
    )
    row = cur.fetchone()
    if row is None:
        return None
    return {"id": row[0], "conversation_id": row[1], "direction": row[2], "status": row[3]}


def attach_conversation(cur: PgCursor, *, provider_message_id: str, conversation_id: int) -> bool:
    """Link a stored message to its conversation. Returns False if already linked."""
    cur.execute(
        """
        UPDATE messages SET conversation_id = %s, updated_at = now()
        WHERE provider_message_id = %s AND conversation_id IS NULL
        """,
        (conversation_id, provider_message_id),
    )
    return cur.rowcount > 0
