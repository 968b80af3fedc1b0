"""Tests for the Chatwoot client with a mocked requests session."""

from unittest.mock import MagicMock

import pytest
import requests

from clinicbridge.chatwoot.client import ChatwootClient
from clinicbridge.errors import ConfigurationError, PlatformError, UpstreamUnavailable

TOKEN = "chatwoot-secret-token"


def make_response(status: int, json_data=None) -> MagicMock:
    response = MagicMock()
    response.status_code = status
    response.content = b"{}" if json_data is not None else b""
    response.json.return_value = json_data
    return response


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def client(session):
    return ChatwootClient("https://chat.example.com/", "7", TOKEN, "3", timeout=4.0, session=session)


class TestRequest:
    def test_account_scoped_url_and_token_header(self, client, session):
        session.request.return_value = make_response(200, {"payload": []})
        client.search_contact("5511999998888")

        args, kwargs = session.request.call_args
        assert args == ("GET", "https://chat.example.com/api/v1/accounts/7/contacts/search")
        assert kwargs["headers"]["api_access_token"] == TOKEN
        assert kwargs["params"] == {"q": "5511999998888"}
        assert kwargs["timeout"] == 4.0

    @pytest.mark.parametrize("status", [500, 503, 429])
    def test_transient(self, client, session, status):
        session.request.return_value = make_response(status, {})
        with pytest.raises(UpstreamUnavailable):
            client.list_contact_conversations("55")

    def test_timeout(self, client, session):
        session.request.side_effect = requests.Timeout()
        with pytest.raises(UpstreamUnavailable):
            client.list_contact_conversations("55")

    @pytest.mark.parametrize("status", [401, 403])
    def test_bad_credentials(self, client, session, status):
        session.request.return_value = make_response(status, {})
        with pytest.raises(ConfigurationError):
            client.list_contact_conversations("55")

    def test_other_4xx(self, client, session):
        session.request.return_value = make_response(404, {})
        with pytest.raises(PlatformError) as exc_info:
            client.list_contact_conversations("55")
        assert exc_info.value.http_status == 404

    def test_repr_masks_token(self, client):
        assert TOKEN not in repr(client)


class TestContacts:
    def test_search_matches_digits(self, client, session):
        session.request.return_value = make_response(
            200,
            {
                "payload": [
                    {"id": 1, "phone_number": "+55 11 98888-7777"},
                    {"id": 2, "phone_number": "+55 11 99999-8888"},
                ]
            },
        )
        assert client.search_contact("5511999998888")["id"] == 2

    def test_search_no_match(self, client, session):
        session.request.return_value = make_response(200, {"payload": [{"id": 1, "phone_number": None}]})
        assert client.search_contact("5511999998888") is None

    def test_create_contact(self, client, session):
        session.request.return_value = make_response(200, {"payload": {"contact": {"id": 55}}})
        contact = client.create_contact("5511999998888", "Maria")

        assert contact["id"] == 55
        body = session.request.call_args.kwargs["json"]
        assert body == {"inbox_id": "3", "name": "Maria", "phone_number": "+5511999998888"}

    def test_create_contact_default_name(self, client, session):
        session.request.return_value = make_response(200, {"id": 56})
        client.create_contact("5511999998888", None)
        assert session.request.call_args.kwargs["json"]["name"] == "+5511999998888"

    def test_create_contact_duplicate_reuses_existing(self, client, session):
        session.request.side_effect = [
            make_response(422, {"message": "Phone number has already been taken"}),
            make_response(200, {"payload": [{"id": 9, "phone_number": "+5511999998888"}]}),
        ]
        assert client.create_contact("5511999998888", "Maria")["id"] == 9

    def test_create_contact_duplicate_not_found(self, client, session):
        session.request.side_effect = [
            make_response(422, {}),
            make_response(200, {"payload": []}),
        ]
        with pytest.raises(PlatformError):
            client.create_contact("5511999998888", "Maria")

    def test_update_contact(self, client, session):
        session.request.return_value = make_response(200, {"payload": {"contact": {"id": 9, "name": "Maria Souza"}}})
        contact = client.update_contact(
            "9",
            name="Maria Souza",
            phone="5511999998888",
            email=None,
            additional_attributes={"patient_id": "p-1"},
        )

        args, kwargs = session.request.call_args
        assert args == ("PUT", "https://chat.example.com/api/v1/accounts/7/contacts/9")
        assert kwargs["json"] == {
            "name": "Maria Souza",
            "phone_number": "+5511999998888",
            "additional_attributes": {"patient_id": "p-1"},
        }
        assert contact == {"id": 9, "name": "Maria Souza"}

    def test_update_missing_contact(self, client, session):
        session.request.return_value = make_response(404, {})
        with pytest.raises(PlatformError):
            client.update_contact("9", name="Maria")


class TestConversations:
    def test_find_open_prefers_newest_in_inbox(self, client, session):
        session.request.return_value = make_response(
            200,
            {
                "payload": [
                    {"id": 10, "status": "open", "inbox_id": 3, "last_activity_at": 100},
                    {"id": 11, "status": "open", "inbox_id": 3, "last_activity_at": 200},
                    {"id": 12, "status": "resolved", "inbox_id": 3, "last_activity_at": 300},
                    {"id": 13, "status": "open", "inbox_id": 4, "last_activity_at": 400},
                ]
            },
        )
        assert client.find_open_conversation("55")["id"] == 11

    def test_find_open_none(self, client, session):
        session.request.return_value = make_response(200, {"payload": []})
        assert client.find_open_conversation("55") is None

    def test_create_conversation(self, client, session):
        session.request.return_value = make_response(200, {"id": 42})
        assert client.create_conversation("55")["id"] == 42
        assert session.request.call_args.kwargs["json"] == {"contact_id": "55", "inbox_id": "3"}

    def test_create_conversation_without_id(self, client, session):
        session.request.return_value = make_response(200, {})
        with pytest.raises(PlatformError):
            client.create_conversation("55")


class TestMessages:
    def test_create_message_body(self, client, session):
        session.request.return_value = make_response(200, {"id": 900})
        client.create_message(
            "42",
            "Olá",
            message_type="outgoing",
            source_id="bridge:7",
            attachment_url="https://cdn.example.com/a.pdf",
        )

        args, kwargs = session.request.call_args
        assert args[1].endswith("/conversations/42/messages")
        assert kwargs["json"] == {
            "content": "Olá",
            "message_type": "outgoing",
            "private": False,
            "source_id": "bridge:7",
            "content_attributes": {"external_attachment_url": "https://cdn.example.com/a.pdf"},
        }
