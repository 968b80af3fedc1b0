"""Outbound jobs repository.

Lifecycle: pending -> sent | failed. Terminal rows are never reopened.
"""

from psycopg2.extensions import cursor as PgCursor

from clinicbridge.models import OutboundJob

_COLUMNS = (
    "id, target_phone, message_body, media_url, attempt_count, status, "
    "created_at, conversation_id, last_error"
)


def _to_job(row: tuple) -> OutboundJob:
    return OutboundJob(
        id=row[0],
        target_phone=row[1],
        message_body=row[2],
        media_url=row[3],
        attempt_count=row[4],
        status=row[5],
        created_at=row[6],
        conversation_id=row[7],
        last_error=row[8],
    )


def create_job(
    cur: PgCursor,
    *,
    target_phone: str,
    message_body: str,
    media_url: str | None,
    conversation_id: int | None,
) -> OutboundJob:
    cur.execute(
        f"""
        INSERT INTO outbound_jobs (target_phone, message_body, media_url, conversation_id)
        VALUES (%s, %s, %s, %s)
        RETURNING {_COLUMNS}
        """,
        (target_phone, message_body, media_url, conversation_id),
    )
    return _to_job(cur.fetchone())


def record_attempt(cur: PgCursor, *, job_id: int) -> int:
    """Increment attempt_count on a pending job. Returns the new count."""
    cur.execute(
        """
        UPDATE outbound_jobs
        SET attempt_count = attempt_count + 1, updated_at = now()
        WHERE id = %s AND status = 'pending'
        RETURNING attempt_count
        """,
        (job_id,),
    )
    row = cur.fetchone()
    if row is None:
        raise RuntimeError(f"outbound job {job_id} is not pending")
    return row[0]


def mark_sent(cur: PgCursor, *, job_id: int, provider_message_id: str | None) -> None:
    cur.execute(
        """
        UPDATE outbound_jobs
        SET status = 'sent', provider_message_id = %s, last_error = NULL,
            sent_at = now(), updated_at = now()
        WHERE id = %s AND status = 'pending'
        """,
        (provider_message_id, job_id),
    )


def mark_failed(cur: PgCursor, *, job_id: int, error: str) -> None:
    cur.execute(
        """
        UPDATE outbound_jobs
        SET status = 'failed', last_error = %s, updated_at = now()
        WHERE id = %s AND status = 'pending'
        """,
        (error, job_id),
    )


def get_job(cur: PgCursor, *, job_id: int) -> OutboundJob | None:
    cur.execute(f"SELECT {_COLUMNS} FROM outbound_jobs WHERE id = %s", (job_id,))
    row = cur.fetchone()
    return _to_job(row) if row else None
