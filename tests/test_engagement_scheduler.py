"""Tests for the Engagement Scheduler: at-most-once automations."""

import threading
from datetime import date, datetime, timezone

import pytest

from clinicbridge.automations.scheduler import (
    DomainEvent,
    compute_trigger_key,
    primary_phone,
)
from clinicbridge.errors import MalformedPayload, RejectedByProvider

# 17:00 UTC is 14:00 in São Paulo
START = datetime(2026, 3, 10, 17, 0, tzinfo=timezone.utc)


@pytest.fixture
def patient(store):
    return store.add_patient("p-1", "Maria Silva", "11999998888", created_at=START)


@pytest.fixture
def appointment(store, patient):
    return store.add_appointment("a-1", "p-1", START)


class TestTriggerKey:
    def test_deterministic(self):
        assert compute_trigger_key("p-1", "birthday", "2026-03-10") == compute_trigger_key(
            "p-1", "birthday", "2026-03-10"
        )

    def test_components_matter(self):
        base = compute_trigger_key("p-1", "birthday", "2026-03-10")
        assert compute_trigger_key("p-2", "birthday", "2026-03-10") != base
        assert compute_trigger_key("p-1", "appointment_created", "2026-03-10") != base
        assert compute_trigger_key("p-1", "birthday", "2027-03-10") != base

    def test_hex_sha256(self):
        key = compute_trigger_key("p-1", "birthday", "2026-03-10")
        assert len(key) == 64
        int(key, 16)


class TestPrimaryPhone:
    def test_primary_whatsapp_first(self):
        patient = {
            "phone": "1133334444",
            "phones": [
                {"phone": "11911111111", "is_primary": False, "is_whatsapp": True},
                {"phone": "11922222222", "is_primary": True, "is_whatsapp": True},
            ],
        }
        assert primary_phone(patient) == "11922222222"

    def test_any_whatsapp_next(self):
        patient = {
            "phones": [
                {"phone": "1133334444", "is_primary": True, "is_whatsapp": False},
                {"phone": "11911111111", "is_primary": False, "is_whatsapp": True},
            ]
        }
        assert primary_phone(patient) == "11911111111"

    def test_first_phone_then_main_field(self):
        assert primary_phone({"phones": [{"phone": "1133334444"}]}) == "1133334444"
        assert primary_phone({"phone": "11999998888", "phones": []}) == "11999998888"
        assert primary_phone({"phones": []}) is None


class TestHandle:
    def test_appointment_created_fires(self, bridge, store, provider, appointment):
        outcome = bridge.scheduler.handle(DomainEvent("appointment_created", appointment_id="a-1"))

        assert outcome.status == "fired"
        assert outcome.automation == "appointment_created"
        assert outcome.trigger_key == compute_trigger_key("p-1", "appointment_created", "2026-03-10")
        (call,) = provider.calls
        assert call["number"] == "5511999998888"
        assert "Maria Silva" in call["text"]
        assert "10/03/2026" in call["text"]
        assert "14:00" in call["text"]

    def test_repeat_suppressed(self, bridge, provider, appointment):
        event = DomainEvent("appointment_created", appointment_id="a-1")
        bridge.scheduler.handle(event)
        second = bridge.scheduler.handle(event)

        assert second.status == "suppressed"
        assert provider.call_count == 1

    def test_concurrent_fires_send_once(self, bridge, store, provider, appointment):
        """K concurrent identical events -> one trigger row, one outbound job."""
        workers = 10
        barrier = threading.Barrier(workers)
        outcomes = []

        def fire():
            barrier.wait()
            outcomes.append(bridge.scheduler.handle(DomainEvent("appointment_created", appointment_id="a-1")))

        threads = [threading.Thread(target=fire) for _ in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert [o.status for o in outcomes].count("fired") == 1
        assert len(store.triggers) == 1
        assert len(store.jobs) == 1
        assert provider.call_count == 1

    def test_home_visit_template(self, bridge, store, provider, patient):
        store.add_appointment("a-2", "p-1", START, location="Domiciliar")
        bridge.scheduler.handle(DomainEvent("appointment_created", appointment_id="a-2"))
        assert "endereço" in provider.calls[0]["text"]

    def test_disabled_automation(self, bridge, provider, appointment):
        bridge.scheduler.settings.update({"appointment_created": {"enabled": False}})
        outcome = bridge.scheduler.handle(DomainEvent("appointment_created", appointment_id="a-1"))
        assert outcome.status == "disabled"
        assert provider.call_count == 0

    def test_status_change_to_arrived(self, bridge, provider, appointment):
        event = DomainEvent("appointment_status_changed", appointment_id="a-1",
                            new_status="arrived", old_status="scheduled")
        outcome = bridge.scheduler.handle(event)
        assert outcome.automation == "welcome_checkin"
        assert outcome.status == "fired"

    def test_status_change_to_completed(self, bridge, appointment):
        event = DomainEvent("appointment_status_changed", appointment_id="a-1", new_status="completed")
        assert bridge.scheduler.handle(event).automation == "goodbye_checkout"

    def test_status_unchanged_skipped(self, bridge, provider, appointment):
        event = DomainEvent("appointment_status_changed", appointment_id="a-1",
                            new_status="arrived", old_status="arrived")
        assert bridge.scheduler.handle(event).status == "skipped"
        assert provider.call_count == 0

    def test_status_without_automation_skipped(self, bridge, appointment):
        event = DomainEvent("appointment_status_changed", appointment_id="a-1", new_status="cancelled")
        assert bridge.scheduler.handle(event).status == "skipped"

    def test_patient_registered(self, bridge, provider, patient):
        outcome = bridge.scheduler.handle(DomainEvent("patient_registered", patient_id="p-1"))
        assert outcome.status == "fired"
        assert outcome.trigger_key == compute_trigger_key("p-1", "patient_registered", "2026-03-10")

    def test_birthday_bucket_is_day(self, bridge, provider, patient):
        day = date(2026, 5, 17)
        first = bridge.scheduler.handle(DomainEvent("birthday", patient_id="p-1", occurred_on=day))
        again = bridge.scheduler.handle(DomainEvent("birthday", patient_id="p-1", occurred_on=day))
        next_year = bridge.scheduler.handle(
            DomainEvent("birthday", patient_id="p-1", occurred_on=date(2027, 5, 17))
        )
        assert [first.status, again.status, next_year.status] == ["fired", "suppressed", "fired"]
        assert "Feliz Aniversário, Maria Silva" in provider.calls[0]["text"]

    def test_missing_appointment_skipped(self, bridge):
        outcome = bridge.scheduler.handle(DomainEvent("appointment_created", appointment_id="nope"))
        assert outcome.status == "skipped"
        assert outcome.reason == "appointment not found"

    def test_patient_without_phone_skipped(self, bridge, store):
        store.add_patient("p-9", "Sem Telefone")
        outcome = bridge.scheduler.handle(DomainEvent("patient_registered", patient_id="p-9"))
        assert outcome.status == "skipped"
        assert outcome.reason == "no phone"

    def test_missing_ids(self, bridge):
        with pytest.raises(MalformedPayload):
            bridge.scheduler.handle(DomainEvent("appointment_created"))
        with pytest.raises(MalformedPayload):
            bridge.scheduler.handle(DomainEvent("birthday"))

    def test_unknown_event(self, bridge):
        with pytest.raises(MalformedPayload):
            bridge.scheduler.handle(DomainEvent("invoice_paid", patient_id="p-1"))

    def test_failed_send_keeps_trigger_claimed(self, bridge, store, provider, appointment):
        provider.always = RejectedByProvider("invalid number")
        with pytest.raises(RejectedByProvider):
            bridge.scheduler.handle(DomainEvent("appointment_created", appointment_id="a-1"))

        provider.always = None
        outcome = bridge.scheduler.handle(DomainEvent("appointment_created", appointment_id="a-1"))
        assert outcome.status == "suppressed"
        assert len(store.triggers) == 1


class TestBatches:
    def test_confirmations_target_days_ahead(self, bridge, store, provider, patient):
        store.add_appointment("a-1", "p-1", START)
        store.add_appointment("a-2", "p-1", datetime(2026, 3, 11, 13, 0, tzinfo=timezone.utc))
        store.add_appointment("a-3", "p-1", START, status="cancelled")

        result = bridge.scheduler.run_appointment_confirmations(date(2026, 3, 8))

        assert result.considered == 1
        assert result.fired == 1
        assert "Lembrando" in provider.calls[0]["text"]

    def test_confirmations_rerun_suppressed(self, bridge, provider, appointment):
        bridge.scheduler.run_appointment_confirmations(date(2026, 3, 8))
        result = bridge.scheduler.run_appointment_confirmations(date(2026, 3, 8))
        assert result.suppressed == 1
        assert provider.call_count == 1

    def test_confirmations_disabled(self, bridge, provider, appointment):
        bridge.scheduler.settings.update({"appointment_confirmation": {"enabled": False}})
        result = bridge.scheduler.run_appointment_confirmations(date(2026, 3, 8))
        assert result.considered == 0
        assert provider.call_count == 0

    def test_birthdays(self, bridge, store, provider):
        store.add_patient("p-1", "Ana", "11911111111", birthdate=date(1980, 7, 4))
        store.add_patient("p-2", "Bia", "11922222222", birthdate=date(1990, 7, 4))
        store.add_patient("p-3", "Caio", "11933333333", birthdate=date(1990, 7, 5))

        result = bridge.scheduler.run_birthday_greetings(date(2026, 7, 4))

        assert result.fired == 2
        assert provider.call_count == 2

    def test_one_failure_does_not_stop_batch(self, bridge, store, provider):
        store.add_patient("p-1", "Ana", "11911111111", birthdate=date(1980, 7, 4))
        store.add_patient("p-2", "Bia", "11922222222", birthdate=date(1990, 7, 4))
        provider.queue(RejectedByProvider("blocked"))

        result = bridge.scheduler.run_birthday_greetings(date(2026, 7, 4))

        assert result.considered == 2
        assert result.failed == 1
        assert result.fired == 1
        assert result.errors == ["blocked"]


class TestManualTest:
    def test_sends_rendered_sample_without_claiming(self, bridge, store, provider):
        receipt = bridge.scheduler.test_automation(
            "appointment_confirmation",
            "11999998888",
            {"nome": "Teste", "start_time": "2026-03-10T17:00:00+00:00"},
        )
        assert receipt.attempts == 1
        assert "Olá Teste" in provider.calls[0]["text"]
        assert "10/03/2026 às 14:00" in provider.calls[0]["text"]
        assert store.triggers == {}

    def test_unknown_automation(self, bridge):
        with pytest.raises(MalformedPayload):
            bridge.scheduler.test_automation("nope", "11999998888")
