"""Webhook processing: normalize, dedupe, apply.

Receipt pattern: the (source, provider_event_id) receipt is inserted before
any side effect. A redelivered event finds its receipt and is a no-op.
Failures after the receipt are recorded on it, with the payload, and logged
with the traceback; the source still gets its 200. A failed receipt is
claimed again on redelivery, so every step of _apply must be safe to re-run.
"""

from __future__ import annotations

from typing import Any, Literal

from clinicbridge.dispatch import OutboundDispatcher
from clinicbridge.errors import DeliveryFailed, IgnoredEvent, MalformedPayload, RejectedByProvider
from clinicbridge.messaging import MessagingService
from clinicbridge.models import InboundEvent
from clinicbridge.observability.logging import get_logger
from clinicbridge.observability.redaction import hash_identifier, safe_log_context
from clinicbridge.phones import DEFAULT_COUNTRY_CODE
from clinicbridge.store import Store
from clinicbridge.sync import ConversationSyncEngine

from .internal_adapter import message_record_id, patient_record_id
from .normalizer import normalize

logger = get_logger(__name__)

Outcome = Literal["ok", "duplicate", "ignored", "rejected", "failed"]

WHATSAPP_SOURCE_PREFIX = "wa:"


class WebhookProcessor:
    def __init__(
        self,
        store: Store,
        sync: ConversationSyncEngine,
        dispatcher: OutboundDispatcher,
        messaging: MessagingService,
        *,
        country_code: str = DEFAULT_COUNTRY_CODE,
    ) -> None:
        self._store = store
        self._sync = sync
        self._dispatcher = dispatcher
        self._messaging = messaging
        self._country_code = country_code

    def process(self, source: str, payload: Any) -> Outcome:
        """Handle one webhook delivery.

        Raises:
            UpstreamUnavailable: Only when the store cannot record the
                receipt (or the rejection), so the source should redeliver.
        """
        try:
            event = normalize(source, payload, self._country_code)
        except IgnoredEvent as e:
            logger.info(
                "webhook ignored",
                extra={"extra_fields": safe_log_context(source=source, reason=str(e))},
            )
            return "ignored"
        except MalformedPayload as e:
            self._store.record_rejected_payload(source, e.message, payload)
            logger.warning(
                "webhook payload rejected",
                extra={"extra_fields": safe_log_context(source=source, reason=e.message)},
            )
            return "rejected"

        log_ctx = safe_log_context(
            source=source,
            event_type=event.event_type,
            event_id_prefix=event.provider_event_id[:24],
        )

        if not self._store.claim_event(source, event.provider_event_id):
            logger.info("duplicate webhook ignored", extra={"extra_fields": log_ctx})
            return "duplicate"

        try:
            self._apply(event)
        except Exception as e:
            self._store.mark_event_failed(
                source, event.provider_event_id, f"{type(e).__name__}: {e}", payload
            )
            logger.exception("webhook processing failed", extra={"extra_fields": log_ctx})
            return "failed"

        logger.info("webhook processed", extra={"extra_fields": log_ctx})
        return "ok"

    def _apply(self, event: InboundEvent) -> None:
        if event.source == "whatsapp":
            if event.event_type == "message_created":
                self._inbound_message(event)
            elif event.event_type == "status_changed":
                self._store.update_message_status(event.provider_message_id, event.status)
        elif event.source == "conversation_platform":
            if event.event_type == "message_created":
                self._messaging.send_to_contact(
                    event.contact_phone,
                    event.body or "",
                    event.media_url,
                    display_name=event.contact_name,
                    mirror=False,
                )
            elif event.event_type == "status_changed":
                self._sync.set_status(event.conversation_ref, event.status)
            # message_updated: the receipt is the only record kept
        elif event.source == "internal":
            if event.event_type == "patient_changed":
                self._patient_changed(event)
            else:
                self._queued_message(event)

    def _inbound_message(self, event: InboundEvent) -> None:
        """Store the patient's message, then bring it to the agents' inbox.

        The row is written before the platform is touched, so an outage
        cannot lose it. It is linked to its conversation only after the
        mirror succeeds: a linked row means the message is fully handled.
        """
        phone_ctx = safe_log_context(phone_hash=hash_identifier(event.contact_phone))
        self._store.insert_message(
            conversation_id=None,
            contact_phone=event.contact_phone,
            direction="incoming",
            body=event.body,
            media_url=event.media_url,
            provider_message_id=event.provider_message_id,
            status="received",
        )
        stored = self._store.get_message(event.provider_message_id)
        if stored is not None and stored["conversation_id"] is not None:
            # Same provider message under a different event id
            logger.info("inbound message already delivered to inbox", extra={"extra_fields": phone_ctx})
            return

        ref = self._sync.ensure_conversation(event.contact_phone, event.contact_name)
        self._sync.mirror_message(
            ref,
            event.body,
            "incoming",
            event.media_url,
            source_id=f"{WHATSAPP_SOURCE_PREFIX}{event.provider_message_id}",
        )
        self._store.attach_message_conversation(event.provider_message_id, ref.local_id)
        self._sync.touch(ref, event.received_at)

    def _queued_message(self, event: InboundEvent) -> None:
        """Deliver a message the clinic UI queued in the store."""
        message_id = message_record_id(event)
        ref = self._sync.ensure_conversation(event.contact_phone, event.contact_name)
        try:
            receipt = self._dispatcher.send(
                event.contact_phone, event.body or "", event.media_url, conversation=ref
            )
        except (RejectedByProvider, DeliveryFailed):
            self._store.update_message_delivery(message_id, "failed", None)
            raise

        self._store.update_message_delivery(message_id, "sent", receipt.provider_message_id)
        self._messaging.mirror_outgoing(ref, event.body or "", event.media_url, receipt.job_id)

    def _patient_changed(self, event: InboundEvent) -> None:
        """Bring the platform contact in line with the clinic's patient record."""
        patient_id = patient_record_id(event)
        patient = self._store.get_patient(patient_id)
        if patient is None:
            logger.warning(
                "changed patient not found, contact not synced",
                extra={"extra_fields": safe_log_context(patient_id=patient_id)},
            )
            return
        self._sync.sync_patient_contact(patient)
