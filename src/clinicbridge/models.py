"""Bridge data model.

Frozen dataclasses: rows are read from the store and handed around, never
mutated in place. State changes go back through the store.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

EventSource = Literal["whatsapp", "conversation_platform", "internal"]
EventType = Literal["message_created", "message_updated", "status_changed", "patient_changed"]
Direction = Literal["incoming", "outgoing"]
ConversationStatus = Literal["open", "resolved"]
JobStatus = Literal["pending", "sent", "failed"]
ChangeKind = Literal["created", "updated", "deleted"]

EVENT_SOURCES: tuple[str, ...] = ("whatsapp", "conversation_platform", "internal")


@dataclass(frozen=True)
class InboundEvent:
    """Canonical webhook event, whatever the source.

    Created once by the normalizer, consumed once by the processor.
    """

    provider_event_id: str
    source: EventSource
    event_type: EventType
    contact_phone: str | None
    contact_name: str | None
    conversation_ref: str | None
    payload: dict[str, Any]
    received_at: datetime
    body: str | None = None
    media_url: str | None = None
    direction: Direction = "incoming"
    provider_message_id: str | None = None
    status: str | None = None


@dataclass(frozen=True)
class Contact:
    id: int
    clinic_id: str
    phone: str
    display_name: str | None
    platform_contact_id: str | None


@dataclass(frozen=True)
class Conversation:
    id: int
    platform_conversation_id: str
    contact_id: int
    account_id: str
    status: ConversationStatus
    last_activity_at: datetime | None


@dataclass(frozen=True)
class ConversationRef:
    """Result of ensure_conversation: platform ids plus the local row id."""

    conversation_id: str
    account_id: str
    local_id: int

    def to_dict(self) -> dict[str, Any]:
        return {"conversation_id": self.conversation_id, "account_id": self.account_id}


@dataclass(frozen=True)
class OutboundJob:
    id: int
    target_phone: str
    message_body: str
    media_url: str | None
    attempt_count: int
    status: JobStatus
    created_at: datetime
    conversation_id: int | None = None
    last_error: str | None = None


@dataclass(frozen=True)
class DeliveryReceipt:
    job_id: int
    provider_message_id: str | None
    attempts: int
    sent_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "provider_message_id": self.provider_message_id,
            "attempts": self.attempts,
            "sent_at": self.sent_at.isoformat(),
        }


@dataclass(frozen=True)
class AutomationTrigger:
    trigger_key: str
    automation: str
    patient_id: str
    fired_at: datetime


@dataclass(frozen=True)
class NotificationEvent:
    id: int
    user_id: str | None
    payload: dict[str, Any]
    created_at: datetime


@dataclass(frozen=True)
class ChangeEvent:
    """One row change delivered by the realtime fan-out."""

    kind: ChangeKind
    table: str
    record_id: str | None
    new: dict[str, Any] | None = None
    old: dict[str, Any] | None = None
    received_at: datetime | None = field(default=None, compare=False)

    @property
    def user_id(self) -> str | None:
        row = self.new or self.old or {}
        value = row.get("user_id")
        return str(value) if value is not None else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "table": self.table,
            "record_id": self.record_id,
            "new": self.new,
            "old": self.old,
        }
