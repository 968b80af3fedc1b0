"""PostgreSQL implementation of the Store protocol.

One short transaction per call. Connection and timeout failures surface as
UpstreamUnavailable from txn().
"""

from datetime import date, datetime
from typing import Any

from clinicbridge.models import AutomationTrigger, Contact, Conversation, NotificationEvent, OutboundJob
from clinicbridge.phones import DEFAULT_COUNTRY_CODE

from .db import DEFAULT_STORE_TIMEOUT, txn
from .repositories import (
    automation_triggers_repository as triggers,
    contacts_repository as contacts,
    conversations_repository as conversations,
    messages_repository as messages,
    notifications_repository as notifications,
    outbound_jobs_repository as jobs,
    patients_repository as patients,
    processed_events_repository as receipts,
)


class PgStore:
    def __init__(
        self,
        dsn: str,
        *,
        timeout_seconds: float = DEFAULT_STORE_TIMEOUT,
        country_code: str = DEFAULT_COUNTRY_CODE,
    ) -> None:
        self._dsn = dsn
        self._timeout = timeout_seconds
        self._country_code = country_code

    def __repr__(self) -> str:
        # DSN carries the password
        return f"PgStore(timeout_seconds={self._timeout})"

    def _txn(self):
        return txn(dsn=self._dsn, timeout_seconds=self._timeout)

    # contacts

    def get_contact(self, clinic_id: str, phone: str) -> Contact | None:
        with self._txn() as cur:
            return contacts.get_contact(cur, clinic_id=clinic_id, phone=phone)

    def insert_contact(self, clinic_id: str, phone: str, display_name: str | None) -> Contact:
        with self._txn() as cur:
            return contacts.insert_contact(
                cur, clinic_id=clinic_id, phone=phone, display_name=display_name
            )

    def set_contact_platform_id(self, contact_id: int, platform_contact_id: str) -> Contact:
        with self._txn() as cur:
            return contacts.set_platform_contact_id(
                cur, contact_id=contact_id, platform_contact_id=platform_contact_id
            )

    # conversations

    def get_open_conversation(self, contact_id: int) -> Conversation | None:
        with self._txn() as cur:
            return conversations.get_open_conversation(cur, contact_id=contact_id)

    def insert_conversation(
        self, contact_id: int, platform_conversation_id: str, account_id: str
    ) -> Conversation:
        with self._txn() as cur:
            return conversations.insert_conversation(
                cur,
                contact_id=contact_id,
                platform_conversation_id=platform_conversation_id,
                account_id=account_id,
            )

    def touch_conversation(self, conversation_id: int, at: datetime) -> None:
        with self._txn() as cur:
            conversations.touch_conversation(cur, conversation_id=conversation_id, at=at)

    def set_conversation_status(self, platform_conversation_id: str, status: str) -> bool:
        with self._txn() as cur:
            return conversations.set_status(
                cur, platform_conversation_id=platform_conversation_id, status=status
            )

    # messages

    def insert_message(self, **fields: Any) -> bool:
        with self._txn() as cur:
            return messages.insert_message(cur, **fields)

    def get_message(self, provider_message_id: str) -> dict[str, Any] | None:
        with self._txn() as cur:
            return messages.get_by_provider_id(cur, provider_message_id=provider_message_id)

    def attach_message_conversation(self, provider_message_id: str, conversation_id: int) -> bool:
        with self._txn() as cur:
            return messages.attach_conversation(
                cur, provider_message_id=provider_message_id, conversation_id=conversation_id
            )

    def update_message_status(self, provider_message_id: str, status: str) -> bool:
        with self._txn() as cur:
            return messages.update_status_by_provider_id(
                cur, provider_message_id=provider_message_id, status=status
            )

    def update_message_delivery(
        self, message_id: int, status: str, provider_message_id: str | None
    ) -> None:
        with self._txn() as cur:
            messages.update_delivery(
                cur,
                message_id=message_id,
                status=status,
                provider_message_id=provider_message_id,
            )

    # outbound jobs

    def create_job(
        self,
        target_phone: str,
        message_body: str,
        media_url: str | None,
        conversation_id: int | None,
    ) -> OutboundJob:
        with self._txn() as cur:
            return jobs.create_job(
                cur,
                target_phone=target_phone,
                message_body=message_body,
                media_url=media_url,
                conversation_id=conversation_id,
            )

    def record_attempt(self, job_id: int) -> int:
        with self._txn() as cur:
            return jobs.record_attempt(cur, job_id=job_id)

    def mark_job_sent(self, job_id: int, provider_message_id: str | None) -> None:
        with self._txn() as cur:
            jobs.mark_sent(cur, job_id=job_id, provider_message_id=provider_message_id)

    def mark_job_failed(self, job_id: int, error: str) -> None:
        with self._txn() as cur:
            jobs.mark_failed(cur, job_id=job_id, error=error)

    def get_job(self, job_id: int) -> OutboundJob | None:
        with self._txn() as cur:
            return jobs.get_job(cur, job_id=job_id)

    # automation triggers

    def claim_trigger(self, trigger_key: str, automation: str, patient_id: str) -> bool:
        with self._txn() as cur:
            return triggers.claim_trigger(
                cur, trigger_key=trigger_key, automation=automation, patient_id=patient_id
            )

    def get_trigger(self, trigger_key: str) -> AutomationTrigger | None:
        with self._txn() as cur:
            return triggers.get_trigger(cur, trigger_key=trigger_key)

    # webhook receipts

    def claim_event(self, source: str, external_id: str) -> bool:
        with self._txn() as cur:
            return receipts.claim_event(cur, source=source, external_id=external_id)

    def mark_event_failed(
        self, source: str, external_id: str, error: str, payload: Any = None
    ) -> None:
        with self._txn() as cur:
            receipts.mark_failed(
                cur, source=source, external_id=external_id, error=error, payload=payload
            )

    def get_receipt(self, source: str, external_id: str) -> dict[str, Any] | None:
        with self._txn() as cur:
            return receipts.get_receipt(cur, source=source, external_id=external_id)

    def record_rejected_payload(self, source: str, reason: str, payload: Any) -> None:
        with self._txn() as cur:
            receipts.record_rejected_payload(cur, source=source, reason=reason, payload=payload)

    # notifications

    def insert_notification(self, user_id: str | None, payload: dict[str, Any]) -> NotificationEvent:
        with self._txn() as cur:
            return notifications.insert_notification(cur, user_id=user_id, payload=payload)

    # clinic records

    def find_patient_by_phone(self, phone: str) -> dict[str, Any] | None:
        national = phone[len(self._country_code):] if phone.startswith(self._country_code) else phone
        with self._txn() as cur:
            return patients.find_by_phone(cur, phone_digits=phone, national_digits=national)

    def get_patient(self, patient_id: str) -> dict[str, Any] | None:
        with self._txn() as cur:
            return patients.get_patient(cur, patient_id=patient_id)

    def get_appointment(self, appointment_id: str) -> dict[str, Any] | None:
        with self._txn() as cur:
            return patients.get_appointment(cur, appointment_id=appointment_id)

    def list_scheduled_appointments(self, on: date) -> list[dict[str, Any]]:
        with self._txn() as cur:
            return patients.list_scheduled_on(cur, on=on)

    def list_birthday_patients(self, on: date) -> list[dict[str, Any]]:
        with self._txn() as cur:
            return patients.list_birthdays(cur, on=on)
