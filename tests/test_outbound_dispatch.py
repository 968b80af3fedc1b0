"""Tests for the Outbound Dispatcher: retry bound, backoff and terminal failures."""

from unittest.mock import patch

import pytest

from clinicbridge.dispatch import OutboundDispatcher, backoff_delay
from clinicbridge.errors import DeliveryFailed, MalformedPayload, RejectedByProvider, UpstreamUnavailable
from clinicbridge.models import ConversationRef
from fakes import FakeProvider, InMemoryStore

PHONE = "5511999998888"
BODY = "Sua consulta está confirmada"


def transient():
    return UpstreamUnavailable("provider returned 503")


def make_dispatcher(provider, store=None, max_attempts=3, backoff=0.5):
    store = store or InMemoryStore()
    sleeps = []
    dispatcher = OutboundDispatcher(
        store,
        provider,
        max_attempts=max_attempts,
        backoff_seconds=backoff,
        sleep=sleeps.append,
    )
    return dispatcher, store, sleeps


class TestBackoff:
    def test_doubles(self):
        assert [backoff_delay(0.5, n) for n in (1, 2, 3)] == [0.5, 1.0, 2.0]

    def test_invalid_max_attempts(self):
        with pytest.raises(ValueError):
            OutboundDispatcher(InMemoryStore(), FakeProvider(), max_attempts=0)


class TestSend:
    def test_first_attempt_success(self):
        dispatcher, store, sleeps = make_dispatcher(FakeProvider(["wamid-1"]))
        receipt = dispatcher.send("(11) 99999-8888", BODY)

        assert receipt.provider_message_id == "wamid-1"
        assert receipt.attempts == 1
        job = store.get_job(receipt.job_id)
        assert job.status == "sent"
        assert job.target_phone == PHONE
        assert sleeps == []

    def test_transient_then_success(self):
        provider = FakeProvider([transient(), transient(), "wamid-3"])
        dispatcher, store, sleeps = make_dispatcher(provider)
        receipt = dispatcher.send(PHONE, BODY)

        assert receipt.attempts == 3
        assert provider.call_count == 3
        assert sleeps == [0.5, 1.0]
        assert store.get_job(receipt.job_id).status == "sent"

    def test_retry_bound_exhausted(self):
        provider = FakeProvider.unavailable()
        dispatcher, store, sleeps = make_dispatcher(provider, max_attempts=3)

        with pytest.raises(DeliveryFailed) as exc_info:
            dispatcher.send(PHONE, BODY)

        assert provider.call_count == 3
        assert exc_info.value.attempts == 3
        assert sleeps == [0.5, 1.0]
        job = store.get_job(exc_info.value.job_id)
        assert job.status == "failed"
        assert job.attempt_count == 3
        assert "503" in job.last_error

    def test_exhaustion_notifies_operators(self):
        dispatcher, store, _ = make_dispatcher(FakeProvider.unavailable(), max_attempts=2)
        with pytest.raises(DeliveryFailed):
            dispatcher.send(PHONE, BODY)

        assert len(store.notifications) == 1
        notification = store.notifications[0]
        assert notification.user_id is None
        assert notification.payload["type"] == "delivery_failed"
        assert notification.payload["metadata"]["attempts"] == 2
        assert PHONE not in str(notification.payload)

    def test_rejection_not_retried(self):
        provider = FakeProvider.rejecting("number not on WhatsApp")
        dispatcher, store, sleeps = make_dispatcher(provider)

        with pytest.raises(RejectedByProvider, match="number not on WhatsApp"):
            dispatcher.send(PHONE, BODY)

        assert provider.call_count == 1
        assert sleeps == []
        (job,) = store.jobs.values()
        assert job.status == "failed"
        assert job.last_error == "rejected: number not on WhatsApp"
        assert store.notifications == []

    def test_rejection_after_transient(self):
        provider = FakeProvider([transient(), RejectedByProvider("blocked", http_status=403)])
        dispatcher, _, sleeps = make_dispatcher(provider)
        with pytest.raises(RejectedByProvider):
            dispatcher.send(PHONE, BODY)
        assert provider.call_count == 2
        assert sleeps == [0.5]

    def test_single_attempt_budget(self):
        provider = FakeProvider.unavailable()
        dispatcher, _, sleeps = make_dispatcher(provider, max_attempts=1)
        with pytest.raises(DeliveryFailed):
            dispatcher.send(PHONE, BODY)
        assert provider.call_count == 1
        assert sleeps == []

    def test_empty_body_rejected_before_job(self):
        dispatcher, store, _ = make_dispatcher(FakeProvider())
        with pytest.raises(MalformedPayload):
            dispatcher.send(PHONE, "   ")
        assert store.jobs == {}

    def test_media_only_allowed(self):
        provider = FakeProvider()
        dispatcher, _, _ = make_dispatcher(provider)
        dispatcher.send(PHONE, "", "https://cdn.example.com/exame.pdf")
        assert provider.calls[0]["media_url"] == "https://cdn.example.com/exame.pdf"

    def test_bad_phone_rejected_before_job(self):
        dispatcher, store, _ = make_dispatcher(FakeProvider())
        with pytest.raises(MalformedPayload):
            dispatcher.send("123", BODY)
        assert store.jobs == {}

    def test_success_touches_conversation(self):
        store = InMemoryStore()
        contact = store.insert_contact("default", PHONE, None)
        conv = store.insert_conversation(contact.id, "42", "1")
        ref = ConversationRef(conversation_id="42", account_id="1", local_id=conv.id)

        dispatcher, _, _ = make_dispatcher(FakeProvider(), store=store)
        receipt = dispatcher.send(PHONE, BODY, conversation=ref)

        assert store.conversations[conv.id].last_activity_at == receipt.sent_at
        assert store.get_job(receipt.job_id).conversation_id == conv.id


class TestNoPiiInLogs:
    def test_phone_and_body_never_logged(self):
        dispatcher, _, _ = make_dispatcher(FakeProvider([transient(), "wamid-2"]))
        with patch("clinicbridge.dispatch.logger") as mock_logger:
            dispatcher.send(PHONE, BODY)

        logged = " ".join(str(c) for c in mock_logger.mock_calls)
        assert PHONE not in logged
        assert BODY not in logged
        assert "to_hash" in logged
