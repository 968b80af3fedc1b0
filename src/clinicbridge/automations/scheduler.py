"""Engagement Scheduler - automated patient messages, at most once per trigger.

A trigger is (patient, automation, bucket). Its key is claimed durably in
the store BEFORE the message is sent: a crash between claim and send means
a missed message, never a duplicate one.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Literal, Mapping

from clinicbridge.errors import BridgeError, MalformedPayload
from clinicbridge.infra.locks import KeyedLocks
from clinicbridge.infra.time import local_today, utc_now
from clinicbridge.messaging import MessagingService
from clinicbridge.models import DeliveryReceipt
from clinicbridge.observability.logging import get_logger
from clinicbridge.observability.redaction import safe_log_context
from clinicbridge.phones import primary_phone
from clinicbridge.store import Store

from .templates import DEFAULT_TIMEZONE, AutomationSettings, local_start, render, template_for

logger = get_logger(__name__)

DomainEventType = Literal[
    "appointment_created",
    "appointment_status_changed",
    "appointment_reminder",
    "patient_registered",
    "birthday",
]

DOMAIN_EVENT_TYPES: tuple[str, ...] = (
    "appointment_created",
    "appointment_status_changed",
    "appointment_reminder",
    "patient_registered",
    "birthday",
)

# Appointment status -> automation fired on entering it
STATUS_AUTOMATIONS = {
    "arrived": "welcome_checkin",
    "completed": "goodbye_checkout",
}

APPOINTMENT_AUTOMATIONS = ("appointment_created", "appointment_confirmation", "welcome_checkin", "goodbye_checkout")

OutcomeStatus = Literal["fired", "suppressed", "disabled", "skipped"]


@dataclass(frozen=True)
class DomainEvent:
    """A change in clinic state that may warrant an automated message."""

    event_type: DomainEventType
    patient_id: str | None = None
    appointment_id: str | None = None
    new_status: str | None = None
    old_status: str | None = None
    occurred_on: date | None = None


@dataclass(frozen=True)
class AutomationOutcome:
    status: OutcomeStatus
    automation: str | None = None
    trigger_key: str | None = None
    reason: str | None = None
    receipt: DeliveryReceipt | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "automation": self.automation,
            "trigger_key": self.trigger_key,
            "reason": self.reason,
            "receipt": self.receipt.to_dict() if self.receipt else None,
        }


@dataclass
class BatchResult:
    automation: str
    considered: int = 0
    fired: int = 0
    suppressed: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)

    def record(self, outcome: AutomationOutcome) -> None:
        self.considered += 1
        if outcome.status == "fired":
            self.fired += 1
        elif outcome.status == "suppressed":
            self.suppressed += 1
        else:
            self.skipped += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "automation": self.automation,
            "considered": self.considered,
            "fired": self.fired,
            "suppressed": self.suppressed,
            "skipped": self.skipped,
            "failed": self.failed,
            "errors": self.errors,
        }


def compute_trigger_key(patient_id: str, automation: str, bucket: str) -> str:
    """sha256 of "patient_id|automation|bucket", hex encoded."""
    raw = f"{patient_id}|{automation}|{bucket}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def _as_date(value: Any) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).date()
    except ValueError:
        return None


class EngagementScheduler:
    def __init__(
        self,
        store: Store,
        messaging: MessagingService,
        settings: AutomationSettings,
        *,
        locks: KeyedLocks | None = None,
        timezone: str = DEFAULT_TIMEZONE,
        confirmation_days_ahead: int = 2,
    ) -> None:
        self._store = store
        self._messaging = messaging
        self.settings = settings
        self._locks = locks or KeyedLocks()
        self._timezone = timezone
        self._days_ahead = confirmation_days_ahead

    # event handling

    def handle(self, event: DomainEvent) -> AutomationOutcome:
        """Decide and, at most once per trigger, send the automated message.

        Raises:
            MalformedPayload: Unknown event type or missing ids.
            RejectedByProvider, DeliveryFailed, UpstreamUnavailable: The
                trigger was claimed but the send failed. It stays claimed.
        """
        automation = self._resolve_automation(event)
        if automation is None:
            return AutomationOutcome(status="skipped", reason="no automation for event")

        config = self.settings.get(automation)
        if not config.enabled:
            return AutomationOutcome(status="disabled", automation=automation)

        appointment = None
        if automation in APPOINTMENT_AUTOMATIONS:
            if not event.appointment_id:
                raise MalformedPayload(f"{event.event_type} requires appointment_id")
            appointment = self._store.get_appointment(event.appointment_id)
            if appointment is None:
                return AutomationOutcome(status="skipped", automation=automation, reason="appointment not found")
            patient = appointment.get("patient")
        else:
            if not event.patient_id:
                raise MalformedPayload(f"{event.event_type} requires patient_id")
            patient = self._store.get_patient(event.patient_id)

        if not patient:
            return AutomationOutcome(status="skipped", automation=automation, reason="patient not found")

        phone = primary_phone(patient)
        if not phone:
            return AutomationOutcome(status="skipped", automation=automation, reason="no phone")

        bucket = self._bucket(automation, event, patient, appointment)
        if bucket is None:
            return AutomationOutcome(status="skipped", automation=automation, reason="no time bucket")

        patient_id = str(patient["id"])
        key = compute_trigger_key(patient_id, automation, bucket)
        log_ctx = safe_log_context(automation=automation, trigger_key_prefix=key[:12])

        with self._locks.hold(key):
            if not self._store.claim_trigger(key, automation, patient_id):
                logger.info("automation trigger suppressed", extra={"extra_fields": log_ctx})
                return AutomationOutcome(status="suppressed", automation=automation, trigger_key=key)

            message = render(template_for(config, appointment), patient, appointment, self._timezone)
            receipt = self._messaging.send_to_contact(phone, message, display_name=patient.get("name"))

        logger.info("automation fired", extra={"extra_fields": log_ctx})
        return AutomationOutcome(status="fired", automation=automation, trigger_key=key, receipt=receipt)

    def _resolve_automation(self, event: DomainEvent) -> str | None:
        if event.event_type == "appointment_created":
            return "appointment_created"
        if event.event_type == "appointment_reminder":
            return "appointment_confirmation"
        if event.event_type == "appointment_status_changed":
            if event.new_status == event.old_status:
                return None
            return STATUS_AUTOMATIONS.get(event.new_status or "")
        if event.event_type in ("patient_registered", "birthday"):
            return event.event_type
        raise MalformedPayload(f"unknown domain event: {event.event_type}")

    def _bucket(
        self,
        automation: str,
        event: DomainEvent,
        patient: Mapping[str, Any],
        appointment: Mapping[str, Any] | None,
    ) -> str | None:
        if appointment is not None:
            start = local_start(appointment, self._timezone)
            return start.date().isoformat() if start else None
        if automation == "patient_registered":
            registered = _as_date(patient.get("created_at")) or event.occurred_on
            return registered.isoformat() if registered else None
        return (event.occurred_on or local_today(self._timezone)).isoformat()

    # batch runners

    def run_appointment_confirmations(self, today: date) -> BatchResult:
        """Remind every scheduled appointment `confirmation_days_ahead` days out."""
        target = today + timedelta(days=self._days_ahead)
        result = BatchResult(automation="appointment_confirmation")
        if not self.settings.get("appointment_confirmation").enabled:
            return result

        for appointment in self._store.list_scheduled_appointments(target):
            self._run_one(
                result,
                DomainEvent(
                    event_type="appointment_reminder",
                    appointment_id=str(appointment["id"]),
                    occurred_on=today,
                ),
            )
        logger.info("appointment confirmations run", extra={"extra_fields": safe_log_context(**result.to_dict())})
        return result

    def run_birthday_greetings(self, today: date) -> BatchResult:
        result = BatchResult(automation="birthday")
        if not self.settings.get("birthday").enabled:
            return result

        for patient in self._store.list_birthday_patients(today):
            self._run_one(
                result,
                DomainEvent(event_type="birthday", patient_id=str(patient["id"]), occurred_on=today),
            )
        logger.info("birthday greetings run", extra={"extra_fields": safe_log_context(**result.to_dict())})
        return result

    def _run_one(self, result: BatchResult, event: DomainEvent) -> None:
        """One item of a batch. Failures are counted and logged; the batch goes on."""
        try:
            outcome = self.handle(event)
        except BridgeError as e:
            result.considered += 1
            result.failed += 1
            result.errors.append(e.message)
            logger.warning(
                "automation item failed",
                extra={"extra_fields": safe_log_context(automation=result.automation, error=e.message)},
            )
            return
        result.record(outcome)

    # manual testing

    def test_automation(self, name: str, phone: str, data: Mapping[str, Any] | None = None) -> DeliveryReceipt:
        """Render `name` with sample data and send it to `phone`. No trigger is claimed."""
        config = self.settings.get(name)
        data = data or {}
        patient = {"name": data.get("nome") or data.get("name") or "Paciente Teste"}
        appointment = None
        if data.get("start_time") or name in APPOINTMENT_AUTOMATIONS:
            appointment = {
                "start_time": data.get("start_time") or utc_now().isoformat(),
                "location": data.get("location"),
            }
        message = render(template_for(config, appointment), patient, appointment, self._timezone)
        return self._messaging.send_to_contact(phone, message, display_name=patient["name"])
