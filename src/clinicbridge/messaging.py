"""Outbound messaging flow shared by the API, the webhook processor and automations.

ensure conversation -> dispatch -> record the message -> mirror to platform.
Recording and mirroring are best-effort: the patient already has the
message, so a store or platform outage only costs the local record or the
agents' view of it.
"""

from __future__ import annotations

from clinicbridge.dispatch import OutboundDispatcher
from clinicbridge.errors import BridgeError
from clinicbridge.models import ConversationRef, DeliveryReceipt
from clinicbridge.observability.logging import get_logger
from clinicbridge.observability.redaction import safe_log_context
from clinicbridge.phones import DEFAULT_COUNTRY_CODE, normalize_phone
from clinicbridge.store import Store
from clinicbridge.sync import ConversationSyncEngine

logger = get_logger(__name__)

BRIDGE_SOURCE_PREFIX = "bridge:"


def bridge_source_id(job_id: int) -> str:
    """source_id stamped on platform messages the bridge writes itself."""
    return f"{BRIDGE_SOURCE_PREFIX}{job_id}"


class MessagingService:
    def __init__(
        self,
        store: Store,
        sync: ConversationSyncEngine,
        dispatcher: OutboundDispatcher,
        *,
        country_code: str = DEFAULT_COUNTRY_CODE,
    ) -> None:
        self._store = store
        self._sync = sync
        self._dispatcher = dispatcher
        self._country_code = country_code

    def send_to_contact(
        self,
        phone: str,
        body: str,
        media_url: str | None = None,
        *,
        display_name: str | None = None,
        conversation: ConversationRef | None = None,
        mirror: bool = True,
    ) -> DeliveryReceipt:
        """Send a message to a contact and keep the inbox in step.

        Args:
            phone: Recipient in any format accepted by normalize_phone.
            body: Message text.
            media_url: Optional attachment URL.
            display_name: Used only when the contact is created.
            conversation: Known conversation, skips ensure_conversation.
            mirror: False when the message originated on the platform.

        Raises:
            MalformedPayload, UpstreamUnavailable, RejectedByProvider,
            DeliveryFailed: see OutboundDispatcher.send.
        """
        phone = normalize_phone(phone, self._country_code)
        ref = conversation or self._sync.ensure_conversation(phone, display_name)
        receipt = self._dispatcher.send(phone, body, media_url, conversation=ref)

        try:
            self._store.insert_message(
                conversation_id=ref.local_id,
                contact_phone=phone,
                direction="outgoing",
                body=body,
                media_url=media_url,
                provider_message_id=receipt.provider_message_id,
                status="sent",
            )
        except BridgeError as e:
            # The message is already delivered at this point
            logger.warning(
                "could not record sent message",
                extra={"extra_fields": safe_log_context(job_id=receipt.job_id, error=e.message)},
            )

        if mirror:
            self.mirror_outgoing(ref, body, media_url, receipt.job_id)
        return receipt

    def mirror_outgoing(
        self,
        ref: ConversationRef,
        body: str,
        media_url: str | None,
        job_id: int,
    ) -> bool:
        try:
            self._sync.mirror_message(
                ref, body, "outgoing", media_url, source_id=bridge_source_id(job_id)
            )
        except BridgeError as e:
            logger.warning(
                "could not mirror outbound message to platform",
                extra={"extra_fields": safe_log_context(job_id=job_id, error=e.message)},
            )
            return False
        return True
