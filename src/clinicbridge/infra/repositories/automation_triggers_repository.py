"""Automation trigger ledger.

A trigger_key is inserted once, ever. The insert is the claim: whoever gets
rowcount 1 fires, everyone else is suppressed.
"""

from psycopg2.extensions import cursor as PgCursor

from clinicbridge.models import AutomationTrigger


def claim_trigger(cur: PgCursor, *, trigger_key: str, automation: str, patient_id: str) -> bool:
    cur.execute(
        """
        INSERT INTO automation_triggers (trigger_key, automation, patient_id)
        VALUES (%s, %s, %s)
        ON CONFLICT (trigger_key) DO NOTHING
        """,
        (trigger_key, automation, patient_id),
    )
    return cur.rowcount == 1


def get_trigger(cur: PgCursor, *, trigger_key: str) -> AutomationTrigger | None:
    cur.execute(
        """
        SELECT trigger_key, automation, patient_id, fired_at
        FROM automation_triggers WHERE trigger_key = %s
        """,
        (trigger_key,),
    )
    row = cur.fetchone()
    if row is None:
        return None
    return AutomationTrigger(
        trigger_key=row[0], automation=row[1], patient_id=row[2], fired_at=row[3]
    )
