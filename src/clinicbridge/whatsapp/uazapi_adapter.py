"""Uazapi adapter - validate and normalize WhatsApp webhook payloads.

Uazapi posts {"EventType": ..., "message": {...}, "chat": {...}}. Only two
event types matter to the bridge: "messages" (new inbound message) and
"messages_update" (delivery/read status of a message we sent).
"""

from typing import Any

from clinicbridge.errors import IgnoredEvent, MalformedPayload
from clinicbridge.infra.time import utc_now
from clinicbridge.models import InboundEvent
from clinicbridge.phones import MAX_DIGITS, digits_only, normalize_phone

MEDIA_KINDS = ("image", "audio", "video", "document", "sticker")

_ID_FIELDS = ("id", "messageid", "messageId", "wa_id")
_SENDER_FIELDS = ("phone", "from", "sender", "chatid")
_JID_FIELDS = ("remoteJid", "jid", "participant", "author")
_BODY_FIELDS = ("text", "content", "body")
_NAME_FIELDS = ("senderName", "notifyName", "pushName", "name")


def _first(data: dict[str, Any], fields: tuple[str, ...]) -> Any:
    for name in fields:
        value = data.get(name)
        if value not in (None, ""):
            return value
    return None


def _sender(message: dict[str, Any]) -> str | None:
    """Pick the sender field. Long ids are internal (LID), try JID fields."""
    candidate = _first(message, _SENDER_FIELDS)
    if candidate is None or len(digits_only(str(candidate).split("@")[0])) > MAX_DIGITS:
        jid = _first(message, _JID_FIELDS)
        if jid is not None:
            return str(jid)
    return str(candidate) if candidate is not None else None


def _media(message: dict[str, Any]) -> tuple[str | None, str | None]:
    """Return (kind, url) for media messages, (None, None) for text."""
    for kind in MEDIA_KINDS:
        nested = message.get(kind) or message.get(f"{kind}Message")
        if nested or message.get("type") == kind or message.get("messageType") == kind:
            url = None
            if isinstance(nested, dict):
                url = nested.get("url")
            url = url or message.get("mediaUrl") or message.get("fileUrl") or message.get("downloadUrl")
            return kind, url
    return None, None


def _is_group(message: dict[str, Any], chat: dict[str, Any]) -> bool:
    if message.get("isGroup") or chat.get("wa_isGroup"):
        return True
    chat_id = str(message.get("chatid") or chat.get("wa_chatid") or "")
    return chat_id.endswith("@g.us")


def parse_whatsapp(payload: dict[str, Any], country_code: str) -> InboundEvent:
    """Map a Uazapi webhook to an InboundEvent.

    Raises:
        MalformedPayload: Shape or phone invalid.
        IgnoredEvent: Own messages, groups and unrelated event types.
    """
    event_type = payload.get("EventType") or payload.get("event")
    message = payload.get("message")
    chat = payload.get("chat") if isinstance(payload.get("chat"), dict) else {}

    if event_type == "messages":
        if not isinstance(message, dict):
            raise MalformedPayload("messages event without message object")

        if message.get("fromMe") or message.get("wasSentByApi"):
            raise IgnoredEvent("message sent by the bridge")
        if _is_group(message, chat):
            raise IgnoredEvent("group message")

        message_id = _first(message, _ID_FIELDS)
        if not message_id:
            raise MalformedPayload("missing message id")

        phone = normalize_phone(_sender(message), country_code)
        _, media_url = _media(message)
        body = _first(message, _BODY_FIELDS)
        name = _first(message, _NAME_FIELDS) or chat.get("name")

        return InboundEvent(
            provider_event_id=str(message_id),
            source="whatsapp",
            event_type="message_created",
            contact_phone=phone,
            contact_name=str(name) if name else None,
            conversation_ref=None,
            payload=payload,
            received_at=utc_now(),
            body=str(body) if body is not None else None,
            media_url=media_url,
            direction="incoming",
            provider_message_id=str(message_id),
        )

    if event_type == "messages_update":
        update = message if isinstance(message, dict) else payload.get("event")
        if not isinstance(update, dict):
            raise MalformedPayload("messages_update without message object")

        message_id = _first(update, _ID_FIELDS)
        if not message_id:
            ids = update.get("MessageIDs")
            message_id = ids[0] if isinstance(ids, list) and ids else None
        status = update.get("status") or update.get("Type") or update.get("state")
        if not message_id or not status:
            raise MalformedPayload("status update without id or status")

        status = str(status).lower()
        return InboundEvent(
            provider_event_id=f"{message_id}:{status}",
            source="whatsapp",
            event_type="status_changed",
            contact_phone=None,
            contact_name=None,
            conversation_ref=None,
            payload=payload,
            received_at=utc_now(),
            direction="outgoing",
            provider_message_id=str(message_id),
            status=status,
        )

    if not event_type:
        raise MalformedPayload("missing EventType")
    raise IgnoredEvent(f"unhandled whatsapp event {event_type}")
