"""Contacts repository.

Uses raw SQL with psycopg2 (no ORM). (clinic_id, phone) is the natural key;
inserts never fail on a concurrent duplicate, they return the existing row.
"""

from psycopg2.extensions import cursor as PgCursor

from clinicbridge.models import Contact

_COLUMNS = "id, clinic_id, phone, display_name, platform_contact_id"


def _to_contact(row: tuple) -> Contact:
    return Contact(
        id=row[0],
        clinic_id=row[1],
        phone=row[2],
        display_name=row[3],
        platform_contact_id=row[4],
    )


def get_contact(cur: PgCursor, *, clinic_id: str, phone: str) -> Contact | None:
    cur.execute(
        f"SELECT {_COLUMNS} FROM contacts WHERE clinic_id = %s AND phone = %s",
        (clinic_id, phone),
    )
    row = cur.fetchone()
    return _to_contact(row) if row else None


def insert_contact(
    cur: PgCursor,
    *,
    clinic_id: str,
    phone: str,
    display_name: str | None,
) -> Contact:
    """Insert contact, or return the row a concurrent writer created first."""
    cur.execute(
        f"""
        INSERT INTO contacts (clinic_id, phone, display_name)
        VALUES (%s, %s, %s)
        ON CONFLICT (clinic_id, phone) DO NOTHING
        RETURNING {_COLUMNS}
        """,
        (clinic_id, phone, display_name),
    )
    row = cur.fetchone()
    if row is not None:
        return _to_contact(row)

    existing = get_contact(cur, clinic_id=clinic_id, phone=phone)
    if existing is None:
        raise RuntimeError("contact conflict without existing row")
    return existing


def set_platform_contact_id(
    cur: PgCursor,
    *,
    contact_id: int,
    platform_contact_id: str,
) -> Contact:
    """Attach the platform contact id unless another writer already did.

    Returns the row as stored, so a loser adopts the winner's id.
    """
    cur.execute(
        """
        UPDATE contacts
        SET platform_contact_id = %s, updated_at = now()
        WHERE id = %s AND platform_contact_id IS NULL
        """,
        (platform_contact_id, contact_id),
    )
    cur.execute(f"SELECT {_COLUMNS} FROM contacts WHERE id = %s", (contact_id,))
    return _to_contact(cur.fetchone())
