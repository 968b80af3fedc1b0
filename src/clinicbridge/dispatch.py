"""Outbound Dispatcher - reliable sends to the WhatsApp provider.

Every send is an OutboundJob row first. Attempts are counted in the store,
so the retry bound holds even if the process dies mid-way.

Security: NEVER log the recipient number or the message body.
"""

from __future__ import annotations

import time
from typing import Callable, Protocol

from clinicbridge.errors import DeliveryFailed, MalformedPayload, RejectedByProvider, UpstreamUnavailable
from clinicbridge.infra.time import utc_now
from clinicbridge.models import ConversationRef, DeliveryReceipt, OutboundJob
from clinicbridge.observability.logging import get_logger
from clinicbridge.observability.redaction import hash_identifier, safe_log_context
from clinicbridge.phones import DEFAULT_COUNTRY_CODE, normalize_phone
from clinicbridge.store import Store

logger = get_logger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_SECONDS = 0.5


class Provider(Protocol):
    def send(self, number: str, text: str, media_url: str | None = None) -> str | None: ...


def backoff_delay(base: float, attempt: int) -> float:
    """Delay after a failed attempt (1-based): base, 2*base, 4*base, ..."""
    return base * (2 ** (attempt - 1))


class OutboundDispatcher:
    def __init__(
        self,
        store: Store,
        provider: Provider,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
        country_code: str = DEFAULT_COUNTRY_CODE,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._store = store
        self._provider = provider
        self._max_attempts = max_attempts
        self._backoff = backoff_seconds
        self._country_code = country_code
        self._sleep = sleep

    def send(
        self,
        target_phone: str,
        body: str,
        media_url: str | None = None,
        conversation: ConversationRef | None = None,
    ) -> DeliveryReceipt:
        """Deliver one message, retrying transient provider failures.

        Raises:
            MalformedPayload: Bad phone or empty message. No job is created.
            RejectedByProvider: Provider refused (4xx). Job marked failed,
                no retry.
            DeliveryFailed: Transient failures exhausted the retry budget.
                Job marked failed and a notification written for operators.
        """
        phone = normalize_phone(target_phone, self._country_code)
        if not (body or "").strip() and not media_url:
            raise MalformedPayload("message body is empty")

        job = self._store.create_job(
            phone, body or "", media_url, conversation.local_id if conversation else None
        )
        log_ctx = safe_log_context(
            job_id=job.id,
            to_hash=hash_identifier(phone),
            body_len=len(body or ""),
        )

        last_error: UpstreamUnavailable | None = None
        attempts = 0
        for attempt in range(1, self._max_attempts + 1):
            attempts = self._store.record_attempt(job.id)
            try:
                provider_message_id = self._provider.send(phone, body or "", media_url)
            except RejectedByProvider as e:
                self._store.mark_job_failed(job.id, f"rejected: {e.reason}")
                logger.warning(
                    "outbound message rejected by provider",
                    extra={"extra_fields": safe_log_context(**log_ctx, attempt=attempt)},
                )
                raise
            except UpstreamUnavailable as e:
                last_error = e
                logger.warning(
                    "outbound send attempt failed",
                    extra={
                        "extra_fields": safe_log_context(
                            **log_ctx, attempt=attempt, error=e.message
                        )
                    },
                )
                if attempt < self._max_attempts:
                    self._sleep(backoff_delay(self._backoff, attempt))
                continue

            self._store.mark_job_sent(job.id, provider_message_id)
            sent_at = utc_now()
            if conversation is not None:
                self._store.touch_conversation(conversation.local_id, sent_at)
            logger.info(
                "outbound message sent",
                extra={"extra_fields": safe_log_context(**log_ctx, attempts=attempts)},
            )
            return DeliveryReceipt(
                job_id=job.id,
                provider_message_id=provider_message_id,
                attempts=attempts,
                sent_at=sent_at,
            )

        error = last_error.message if last_error else "unknown error"
        self._store.mark_job_failed(job.id, error)
        self._notify_failure(job, attempts, error)
        logger.error(
            "outbound delivery failed",
            extra={"extra_fields": safe_log_context(**log_ctx, attempts=attempts)},
        )
        raise DeliveryFailed(
            f"delivery failed after {attempts} attempts: {error}",
            attempts=attempts,
            job_id=job.id,
        )

    def _notify_failure(self, job: OutboundJob, attempts: int, error: str) -> None:
        """Make the terminal failure visible to a human operator."""
        self._store.insert_notification(
            None,
            {
                "type": "delivery_failed",
                "title": "WhatsApp message not delivered",
                "message": f"Outbound message {job.id} failed after {attempts} attempts.",
                "metadata": {
                    "job_id": job.id,
                    "attempts": attempts,
                    "phone_hash": hash_identifier(job.target_phone),
                    "last_error": error,
                },
            },
        )
