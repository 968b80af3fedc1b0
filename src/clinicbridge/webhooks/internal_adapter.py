"""Internal adapter - database webhooks fired by the clinic store.

The store posts {"type": "INSERT", "table": ..., "record": {...}, "old_record": ...}.

- messages: the clinic UI queues an outbound message by inserting a row
  with direction 'outgoing' and status 'pending'
- patients, patient_phones: a patient's name or phones changed, so the
  platform contact is brought up to date
"""

from typing import Any

from clinicbridge.errors import IgnoredEvent, MalformedPayload
from clinicbridge.infra.time import utc_now
from clinicbridge.models import InboundEvent
from clinicbridge.phones import normalize_phone

PATIENT_TABLES = ("patients", "patient_phones")


def parse_internal(payload: dict[str, Any], country_code: str) -> InboundEvent:
    """Map a store webhook to a canonical event.

    Raises:
        MalformedPayload: Missing record, id or phone.
        IgnoredEvent: Other tables, operations or message states.
    """
    op = payload.get("type")
    table = payload.get("table")
    if not op or not table:
        raise MalformedPayload("missing type or table")
    if table in PATIENT_TABLES:
        return _patient_change(payload, op, table)
    if table != "messages" or op != "INSERT":
        raise IgnoredEvent(f"unhandled {op} on {table}")

    record = payload.get("record")
    if not isinstance(record, dict) or record.get("id") is None:
        raise MalformedPayload("messages INSERT without record id")

    if record.get("direction") != "outgoing" or record.get("status", "pending") != "pending":
        raise IgnoredEvent("message is not a pending outgoing message")

    body = record.get("body") or record.get("content")
    media_url = record.get("media_url")
    if not body and not media_url:
        raise MalformedPayload("outgoing message without body")

    phone = normalize_phone(record.get("contact_phone") or record.get("phone"), country_code)
    return InboundEvent(
        provider_event_id=f"messages:{record['id']}:INSERT",
        source="internal",
        event_type="message_created",
        contact_phone=phone,
        contact_name=record.get("contact_name"),
        conversation_ref=None,
        payload=payload,
        received_at=utc_now(),
        body=body,
        media_url=media_url,
        direction="outgoing",
    )


def _patient_change(payload: dict[str, Any], op: str, table: str) -> InboundEvent:
    if op not in ("INSERT", "UPDATE"):
        raise IgnoredEvent(f"unhandled {op} on {table}")
    record = payload.get("record")
    if not isinstance(record, dict) or record.get("id") is None:
        raise MalformedPayload(f"{table} {op} without record id")

    if table == "patients":
        patient_id = record["id"]
    else:
        if not record.get("is_whatsapp"):
            raise IgnoredEvent("patient phone is not a WhatsApp number")
        patient_id = record.get("patient_id")
        if patient_id is None:
            raise MalformedPayload("patient_phones record without patient_id")

    received_at = utc_now()
    # A patient row changes many times; without a change time every delivery is applied
    changed_at = record.get("updated_at") or received_at.isoformat()
    return InboundEvent(
        provider_event_id=f"{table}:{record['id']}:{op}:{changed_at}",
        source="internal",
        event_type="patient_changed",
        contact_phone=None,
        contact_name=record.get("name") if table == "patients" else None,
        conversation_ref=None,
        payload=payload,
        received_at=received_at,
    )


def message_record_id(event: InboundEvent) -> int:
    return int(event.payload["record"]["id"])


def patient_record_id(event: InboundEvent) -> str:
    record = event.payload["record"]
    if event.payload["table"] == "patients":
        return str(record["id"])
    return str(record["patient_id"])
