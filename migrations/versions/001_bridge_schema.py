"""Bridge schema: contacts, conversations, messages, outbound jobs,
automation triggers, webhook receipts and change notifications.

Revision ID: 001_bridge_schema
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from pathlib import Path

from alembic import op

revision = "001_bridge_schema"
down_revision = None
branch_labels = None
depends_on = None

_SQL_FILE = Path(__file__).resolve().parent.parent / "sql" / "001_bridge_schema.sql"


def upgrade() -> None:
    # Raw execution for the plpgsql $$ body
    conn = op.get_bind()
    conn.exec_driver_sql(_SQL_FILE.read_text(encoding="utf-8"))


def downgrade() -> None:
    op.execute(
        """
        DROP TABLE IF EXISTS rejected_payloads, processed_events, automation_triggers,
            outbound_jobs, messages, conversations, contacts;
        DROP TRIGGER IF EXISTS trg_notifications_notify ON notifications;
        DROP FUNCTION IF EXISTS bridge_notify_change();
        """
    )
