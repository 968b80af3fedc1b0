"""Conversation Sync Engine.

Keeps the local contacts/conversations mapping consistent with the
conversation platform. The invariant is at most one open platform
conversation per (clinic, phone), under concurrent and duplicate webhooks.
One engine serves one clinic; its platform account and inbox are the
clinic scope on the platform side.

- inside one process, ensure_conversation is serialized per (clinic, phone)
- across processes, the store's unique constraints decide the winner and
  losers re-read it
- before creating anything on the platform, existing platform records are
  searched and reused
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Mapping

from clinicbridge.chatwoot.client import ChatwootClient
from clinicbridge.errors import MalformedPayload
from clinicbridge.infra.locks import KeyedLocks
from clinicbridge.infra.time import utc_now
from clinicbridge.models import Contact, ConversationRef
from clinicbridge.observability.logging import get_logger
from clinicbridge.observability.redaction import hash_identifier, safe_log_context
from clinicbridge.phones import DEFAULT_COUNTRY_CODE, normalize_phone, primary_phone
from clinicbridge.store import Store

logger = get_logger(__name__)


class ConversationSyncEngine:
    def __init__(
        self,
        store: Store,
        platform: ChatwootClient,
        *,
        clinic_id: str = "default",
        country_code: str = DEFAULT_COUNTRY_CODE,
        locks: KeyedLocks | None = None,
    ) -> None:
        self._store = store
        self._platform = platform
        self._clinic_id = clinic_id
        self._country_code = country_code
        self._locks = locks or KeyedLocks()

    def ensure_conversation(
        self,
        phone: str,
        display_name: str | None = None,
    ) -> ConversationRef:
        """Return the open platform conversation for this phone, creating it if needed.

        Raises:
            MalformedPayload: Phone cannot be normalized.
            UpstreamUnavailable: Platform or store unreachable. Nothing is
                half-created locally that a retry would not reuse.
        """
        clinic = self._clinic_id
        phone = normalize_phone(phone, self._country_code)
        log_ctx = safe_log_context(clinic_id=clinic, phone_hash=hash_identifier(phone))

        with self._locks.hold(f"{clinic}:{phone}"):
            contact = self._store.get_contact(clinic, phone)
            if contact is None:
                contact = self._store.insert_contact(clinic, phone, display_name)

            contact = self._link_platform_contact(contact, phone, display_name, log_ctx)

            conversation = self._store.get_open_conversation(contact.id)
            if conversation is None:
                remote_conv = self._platform.find_open_conversation(contact.platform_contact_id)
                if remote_conv is None:
                    remote_conv = self._platform.create_conversation(contact.platform_contact_id)
                    logger.info("platform conversation created", extra={"extra_fields": log_ctx})
                conversation = self._store.insert_conversation(
                    contact.id, str(remote_conv["id"]), self._platform.account_id
                )

        return ConversationRef(
            conversation_id=conversation.platform_conversation_id,
            account_id=conversation.account_id,
            local_id=conversation.id,
        )

    def sync_patient_contact(self, patient: Mapping[str, Any]) -> str | None:
        """Push a clinic patient's name, phone and email onto the platform contact.

        The contact is looked up (or created) by the patient's WhatsApp
        phone, like any inbound conversation would. Returns the platform
        contact id, or None when the patient has no usable phone.

        Raises:
            UpstreamUnavailable: Platform or store unreachable.
        """
        clinic = self._clinic_id
        raw_phone = primary_phone(patient)
        try:
            phone = normalize_phone(raw_phone, self._country_code)
        except MalformedPayload as e:
            logger.info(
                "patient has no usable phone, contact not synced",
                extra={"extra_fields": safe_log_context(patient_id=patient.get("id"), reason=e.message)},
            )
            return None
        log_ctx = safe_log_context(clinic_id=clinic, phone_hash=hash_identifier(phone))

        with self._locks.hold(f"{clinic}:{phone}"):
            contact = self._store.get_contact(clinic, phone)
            if contact is None:
                contact = self._store.insert_contact(clinic, phone, patient.get("name"))
            contact = self._link_platform_contact(contact, phone, patient.get("name"), log_ctx)

            birthdate = patient.get("birthdate")
            self._platform.update_contact(
                contact.platform_contact_id,
                name=patient.get("name"),
                phone=phone,
                email=patient.get("email"),
                additional_attributes={
                    "patient_id": str(patient["id"]),
                    "birth_date": birthdate.isoformat() if isinstance(birthdate, date) else birthdate,
                },
            )

        logger.info("platform contact synced with patient", extra={"extra_fields": log_ctx})
        return contact.platform_contact_id

    def _link_platform_contact(
        self, contact: Contact, phone: str, display_name: str | None, log_ctx: dict[str, Any]
    ) -> Contact:
        """Give the local contact its platform id, reusing a platform contact with the same phone."""
        if contact.platform_contact_id is not None:
            return contact
        remote = self._platform.search_contact(phone)
        if remote is None:
            remote = self._platform.create_contact(phone, display_name)
            logger.info("platform contact created", extra={"extra_fields": log_ctx})
        return self._store.set_contact_platform_id(contact.id, str(remote["id"]))

    def mirror_message(
        self,
        ref: ConversationRef,
        body: str | None,
        direction: str,
        media_url: str | None = None,
        source_id: str | None = None,
    ) -> None:
        """Post a message into the platform conversation so agents see it."""
        self._platform.create_message(
            ref.conversation_id,
            body or "",
            message_type=direction,
            source_id=source_id,
            attachment_url=media_url,
        )

    def touch(self, ref: ConversationRef, at: datetime | None = None) -> None:
        self._store.touch_conversation(ref.local_id, at or utc_now())

    def set_status(self, platform_conversation_id: str, status: str) -> bool:
        """Mirror a platform-side open/resolved change into the local mapping."""
        local_status = "open" if status == "open" else "resolved"
        return self._store.set_conversation_status(platform_conversation_id, local_status)
