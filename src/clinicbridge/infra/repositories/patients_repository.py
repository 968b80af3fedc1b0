"""Read-only access to clinic records (patients, phones, appointments).

These tables belong to the clinic application. The bridge never writes them.
Phones in the clinic tables are stored as typed by staff, so lookups
compare digit-only forms.
"""

from datetime import date
from typing import Any

from psycopg2.extensions import cursor as PgCursor

_PATIENT_COLUMNS = "p.id, p.clinic_id, p.name, p.phone, p.email, p.birthdate, p.created_at"


def _to_patient(row: tuple) -> dict[str, Any]:
    return {
        "id": str(row[0]),
        "clinic_id": row[1],
        "name": row[2],
        "phone": row[3],
        "email": row[4],
        "birthdate": row[5],
        "created_at": row[6],
    }


def _load_phones(cur: PgCursor, patient_id: str) -> list[dict[str, Any]]:
    cur.execute(
        """
        SELECT phone, is_primary, is_whatsapp
        FROM patient_phones WHERE patient_id = %s
        ORDER BY is_primary DESC, id
        """,
        (patient_id,),
    )
    return [
        {"phone": r[0], "is_primary": r[1], "is_whatsapp": r[2]}
        for r in cur.fetchall()
    ]


def _with_phones(cur: PgCursor, row: tuple | None) -> dict[str, Any] | None:
    if row is None:
        return None
    patient = _to_patient(row)
    patient["phones"] = _load_phones(cur, patient["id"])
    return patient


def find_by_phone(cur: PgCursor, *, phone_digits: str, national_digits: str) -> dict[str, Any] | None:
    """Find patient by primary phone, then by secondary phones.

    Args:
        phone_digits: Normalized phone (with country code).
        national_digits: Same number without country code, as staff usually type it.
    """
    cur.execute(
        f"""
        SELECT {_PATIENT_COLUMNS} FROM patients p
        WHERE regexp_replace(p.phone, '\\D', '', 'g') IN (%s, %s)
        ORDER BY p.created_at
        LIMIT 1
        """,
        (phone_digits, national_digits),
    )
    row = cur.fetchone()
    if row is None:
        cur.execute(
            f"""
            SELECT {_PATIENT_COLUMNS} FROM patient_phones pp
            JOIN patients p ON p.id = pp.patient_id
            WHERE regexp_replace(pp.phone, '\\D', '', 'g') IN (%s, %s)
            ORDER BY pp.is_whatsapp DESC, p.created_at
            LIMIT 1
            """,
            (phone_digits, national_digits),
        )
        row = cur.fetchone()
    return _with_phones(cur, row)


def get_patient(cur: PgCursor, *, patient_id: str) -> dict[str, Any] | None:
    cur.execute(f"SELECT {_PATIENT_COLUMNS} FROM patients p WHERE p.id::text = %s", (str(patient_id),))
    return _with_phones(cur, cur.fetchone())


def _appointment_rows(cur: PgCursor, where: str, params: tuple) -> list[dict[str, Any]]:
    cur.execute(
        f"""
        SELECT a.id, a.start_time, a.title, a.status, a.location, a.patient_id
        FROM appointments a
        WHERE {where}
        ORDER BY a.start_time
        """,
        params,
    )
    appointments = []
    for row in cur.fetchall():
        appointments.append(
            {
                "id": str(row[0]),
                "start_time": row[1],
                "title": row[2],
                "status": row[3],
                "location": row[4],
                "patient": get_patient(cur, patient_id=row[5]) if row[5] else None,
            }
        )
    return appointments


def get_appointment(cur: PgCursor, *, appointment_id: str) -> dict[str, Any] | None:
    rows = _appointment_rows(cur, "a.id = %s", (appointment_id,))
    return rows[0] if rows else None


def list_scheduled_on(cur: PgCursor, *, on: date) -> list[dict[str, Any]]:
    return _appointment_rows(
        cur,
        "a.status = 'scheduled' AND a.start_time::date = %s",
        (on,),
    )


def list_birthdays(cur: PgCursor, *, on: date) -> list[dict[str, Any]]:
    cur.execute(
        f"""
        SELECT {_PATIENT_COLUMNS} FROM patients p
        WHERE p.birthdate IS NOT NULL
          AND EXTRACT(MONTH FROM p.birthdate) = %s
          AND EXTRACT(DAY FROM p.birthdate) = %s
        ORDER BY p.name
        """,
        (on.month, on.day),
    )
    rows = cur.fetchall()
    return [_with_phones(cur, row) for row in rows]
