"""Conversations repository - local mapping of platform conversations.

At most one open conversation per contact, enforced by the partial unique
index uq_conversations_open_contact.
"""

from datetime import datetime

from psycopg2.extensions import cursor as PgCursor

from clinicbridge.models import Conversation

_COLUMNS = "id, platform_conversation_id, contact_id, account_id, status, last_activity_at"


def _to_conversation(row: tuple) -> Conversation:
    return Conversation(
        id=row[0],
        platform_conversation_id=row[1],
        contact_id=row[2],
        account_id=row[3],
        status=row[4],
        last_activity_at=row[5],
    )


def get_open_conversation(cur: PgCursor, *, contact_id: int) -> Conversation | None:
    cur.execute(
        f"""
        SELECT {_COLUMNS} FROM conversations
        WHERE contact_id = %s AND status = 'open'
        """,
        (contact_id,),
    )
    row = cur.fetchone()
    return _to_conversation(row) if row else None


def insert_conversation(
    cur: PgCursor,
    *,
    contact_id: int,
    platform_conversation_id: str,
    account_id: str,
) -> Conversation:
    """Insert open conversation, or return the open one that won the race."""
    cur.execute(
        f"""
        INSERT INTO conversations (contact_id, platform_conversation_id, account_id, status, last_activity_at)
        VALUES (%s, %s, %s, 'open', now())
        ON CONFLICT DO NOTHING
        RETURNING {_COLUMNS}
        """,
        (contact_id, platform_conversation_id, account_id),
    )
    row = cur.fetchone()
    if row is not None:
        return _to_conversation(row)

    # Lost on the open-per-contact index, or this contact's platform
    # conversation was resolved and reopened upstream.
    existing = get_open_conversation(cur, contact_id=contact_id)
    if existing is not None:
        return existing

    cur.execute(
        f"""
        UPDATE conversations
        SET status = 'open', last_activity_at = now()
        WHERE platform_conversation_id = %s AND contact_id = %s
        RETURNING {_COLUMNS}
        """,
        (platform_conversation_id, contact_id),
    )
    row = cur.fetchone()
    if row is None:
        raise RuntimeError(
            f"platform conversation {platform_conversation_id} is mapped to another contact"
        )
    return _to_conversation(row)


def touch_conversation(cur: PgCursor, *, conversation_id: int, at: datetime) -> None:
    cur.execute(
        """
        UPDATE conversations
        SET last_activity_at = GREATEST(COALESCE(last_activity_at, %s), %s)
        WHERE id = %s
        """,
        (at, at, conversation_id),
    )


def set_status(cur: PgCursor, *, platform_conversation_id: str, status: str) -> bool:
    """Mirror a platform-side status change. Returns False if unmapped."""
    cur.execute(
        """
        UPDATE conversations
        SET status = %s, last_activity_at = now()
        WHERE platform_conversation_id = %s AND status <> %s
        """,
        (status, platform_conversation_id, status),
    )
    return cur.rowcount > 0
