"""Store interface consumed by the bridge services.

The relational store is an external collaborator. Services only see this
protocol; PgStore (infra/pg_store.py) implements it over psycopg2.

Every create method is idempotent on its natural key: when a concurrent
writer wins the unique constraint, the method returns the winner's row
instead of failing.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Protocol

from .models import AutomationTrigger, Contact, Conversation, NotificationEvent, OutboundJob


class Store(Protocol):
    # contacts
    def get_contact(self, clinic_id: str, phone: str) -> Contact | None: ...

    def insert_contact(self, clinic_id: str, phone: str, display_name: str | None) -> Contact: ...

    def set_contact_platform_id(self, contact_id: int, platform_contact_id: str) -> Contact: ...

    # conversations
    def get_open_conversation(self, contact_id: int) -> Conversation | None: ...

    def insert_conversation(
        self, contact_id: int, platform_conversation_id: str, account_id: str
    ) -> Conversation: ...

    def touch_conversation(self, conversation_id: int, at: datetime) -> None: ...

    def set_conversation_status(self, platform_conversation_id: str, status: str) -> bool: ...

    # messages
    def insert_message(
        self,
        *,
        conversation_id: int | None,
        contact_phone: str,
        direction: str,
        body: str | None,
        media_url: str | None,
        provider_message_id: str | None,
        status: str,
    ) -> bool: ...

    def get_message(self, provider_message_id: str) -> dict[str, Any] | None: ...

    def attach_message_conversation(self, provider_message_id: str, conversation_id: int) -> bool: ...

    def update_message_status(self, provider_message_id: str, status: str) -> bool: ...

    def update_message_delivery(
        self, message_id: int, status: str, provider_message_id: str | None
    ) -> None: ...

    # outbound jobs
    def create_job(
        self,
        target_phone: str,
        message_body: str,
        media_url: str | None,
        conversation_id: int | None,
    ) -> OutboundJob: ...

    def record_attempt(self, job_id: int) -> int: ...

    def mark_job_sent(self, job_id: int, provider_message_id: str | None) -> None: ...

    def mark_job_failed(self, job_id: int, error: str) -> None: ...

    def get_job(self, job_id: int) -> OutboundJob | None: ...

    # automation triggers
    def claim_trigger(self, trigger_key: str, automation: str, patient_id: str) -> bool: ...

    def get_trigger(self, trigger_key: str) -> AutomationTrigger | None: ...

    # webhook receipts
    def claim_event(self, source: str, external_id: str) -> bool: ...

    def mark_event_failed(
        self, source: str, external_id: str, error: str, payload: Any = None
    ) -> None: ...

    def record_rejected_payload(self, source: str, reason: str, payload: Any) -> None: ...

    # notifications
    def insert_notification(self, user_id: str | None, payload: dict[str, Any]) -> NotificationEvent: ...

    # clinic records (read-only)
    def find_patient_by_phone(self, phone: str) -> dict[str, Any] | None: ...

    def get_patient(self, patient_id: str) -> dict[str, Any] | None: ...

    def get_appointment(self, appointment_id: str) -> dict[str, Any] | None: ...

    def list_scheduled_appointments(self, on: date) -> list[dict[str, Any]]: ...

    def list_birthday_patients(self, on: date) -> list[dict[str, Any]]: ...
