"""Chatwoot adapter - normalize platform webhooks into InboundEvents.

The platform echoes back every message the bridge mirrors into it, so
messages carrying a bridge source_id ("bridge:" or "wa:" prefix) are
ignored here. That is what keeps the two sides from looping.
"""

from typing import Any

from clinicbridge.errors import IgnoredEvent, MalformedPayload
from clinicbridge.infra.time import utc_now
from clinicbridge.models import InboundEvent
from clinicbridge.phones import normalize_phone

BRIDGE_SOURCE_PREFIXES = ("bridge:", "wa:")

_OUTGOING = ("outgoing", 1, "1")


def _contact_phone(payload: dict[str, Any]) -> str | None:
    conversation = payload.get("conversation") or {}
    candidates = [
        (payload.get("contact") or {}).get("phone_number"),
        ((conversation.get("meta") or {}).get("sender") or {}).get("phone_number"),
        ((payload.get("meta") or {}).get("sender") or {}).get("phone_number"),
        (payload.get("sender") or {}).get("phone_number"),
    ]
    for value in candidates:
        if value:
            return str(value)
    return None


def _contact_name(payload: dict[str, Any]) -> str | None:
    conversation = payload.get("conversation") or {}
    sender = (conversation.get("meta") or {}).get("sender") or payload.get("contact") or {}
    return sender.get("name")


def _attachment_url(payload: dict[str, Any]) -> str | None:
    for attachment in payload.get("attachments") or []:
        if isinstance(attachment, dict) and attachment.get("data_url"):
            return attachment["data_url"]
    return None


def _message_fields(payload: dict[str, Any]) -> dict[str, Any]:
    """Flatten the two shapes seen in the wild (top-level or nested message)."""
    nested = payload.get("message")
    if isinstance(nested, dict):
        merged = dict(payload)
        merged.update(nested)
        return merged
    return payload


def parse_platform(payload: dict[str, Any], country_code: str) -> InboundEvent:
    """Map a Chatwoot webhook to an InboundEvent.

    Raises:
        MalformedPayload: Required ids or phone missing.
        IgnoredEvent: Private notes, incoming echoes, bridge-authored
            messages and event types the bridge does not handle.
    """
    event = payload.get("event")
    if not event:
        raise MalformedPayload("missing event")

    if event in ("message_created", "message_updated"):
        msg = _message_fields(payload)
        message_id = msg.get("id")
        if message_id is None:
            raise MalformedPayload("message event without id")

        conversation_id = (payload.get("conversation") or {}).get("id") or msg.get("conversation_id")
        source_id = str(msg.get("source_id") or "")
        direction = "outgoing" if msg.get("message_type") in _OUTGOING else "incoming"

        if event == "message_created":
            if msg.get("private"):
                raise IgnoredEvent("private note")
            if direction != "outgoing":
                raise IgnoredEvent("incoming message echoed by the platform")
            if source_id.startswith(BRIDGE_SOURCE_PREFIXES):
                raise IgnoredEvent("message authored by the bridge")
            if conversation_id is None:
                raise MalformedPayload("message without conversation id")

            event_id = f"message_created:{message_id}"
            phone = normalize_phone(_contact_phone(payload), country_code)
            status = None
        else:
            status = msg.get("status")
            event_id = f"message_updated:{message_id}" + (f":{status}" if status else "")
            raw_phone = _contact_phone(payload)
            phone = normalize_phone(raw_phone, country_code) if raw_phone else None

        return InboundEvent(
            provider_event_id=event_id,
            source="conversation_platform",
            event_type=event,
            contact_phone=phone,
            contact_name=_contact_name(payload),
            conversation_ref=str(conversation_id) if conversation_id is not None else None,
            payload=payload,
            received_at=utc_now(),
            body=msg.get("content"),
            media_url=_attachment_url(msg),
            direction=direction,
            provider_message_id=str(message_id),
            status=status,
        )

    if event == "conversation_status_changed":
        conversation = payload.get("conversation") or {}
        conversation_id = payload.get("id") or conversation.get("id")
        status = payload.get("status") or conversation.get("status")
        if conversation_id is None or not status:
            raise MalformedPayload("status change without conversation id or status")

        # A status recurs, so the change time is part of the key. Without
        # one every delivery is applied (set_status is idempotent).
        received_at = utc_now()
        changed_at = (
            payload.get("updated_at")
            or payload.get("timestamp")
            or conversation.get("updated_at")
            or received_at.isoformat()
        )
        raw_phone = _contact_phone(payload)
        return InboundEvent(
            provider_event_id=f"conversation_status_changed:{conversation_id}:{status}:{changed_at}",
            source="conversation_platform",
            event_type="status_changed",
            contact_phone=normalize_phone(raw_phone, country_code) if raw_phone else None,
            contact_name=_contact_name(payload),
            conversation_ref=str(conversation_id),
            payload=payload,
            received_at=received_at,
            status=str(status),
        )

    raise IgnoredEvent(f"unhandled platform event {event}")
