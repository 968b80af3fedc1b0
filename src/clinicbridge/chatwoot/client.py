"""Chatwoot REST client (conversation platform).

Security: the API token is held privately, injected only into request
headers and masked in repr. Phone numbers are logged as hashes only.
"""

from typing import Any

import requests

from clinicbridge.errors import ConfigurationError, PlatformError, UpstreamUnavailable
from clinicbridge.observability.logging import get_logger
from clinicbridge.observability.redaction import hash_identifier, mask_secret, safe_log_context
from clinicbridge.phones import digits_only

logger = get_logger(__name__)

HTTP_TIMEOUT = 10.0


class ChatwootClient:
    """Thin wrapper over the account-scoped Chatwoot API.

    Error mapping:
    - timeout, connection error, 5xx, 429 -> UpstreamUnavailable
    - 401/403 -> ConfigurationError (bad token or account)
    - other 4xx -> PlatformError
    """

    def __init__(
        self,
        base_url: str,
        account_id: str,
        token: str,
        inbox_id: str,
        *,
        timeout: float = HTTP_TIMEOUT,
        session: requests.Session | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self.account_id = str(account_id)
        self.inbox_id = str(inbox_id)
        self._token = token
        self._timeout = timeout
        self._session = session or requests.Session()

    def __repr__(self) -> str:
        return (
            f"ChatwootClient(base_url={self._base_url!r}, account_id={self.account_id!r}, "
            f"token={mask_secret(self._token)})"
        )

    def _url(self, path: str) -> str:
        return f"{self._base_url}/api/v1/accounts/{self.account_id}{path}"

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        headers = {"api_access_token": self._token, "Content-Type": "application/json"}
        try:
            response = self._session.request(
                method,
                self._url(path),
                headers=headers,
                timeout=self._timeout,
                **kwargs,
            )
        except requests.Timeout as e:
            raise UpstreamUnavailable("conversation platform timed out") from e
        except requests.RequestException as e:
            raise UpstreamUnavailable(
                f"conversation platform unreachable: {type(e).__name__}"
            ) from e

        status = response.status_code
        if status >= 500 or status == 429:
            raise UpstreamUnavailable(f"conversation platform returned {status}")
        if status in (401, 403):
            logger.error(
                "chatwoot rejected credentials",
                extra={"extra_fields": safe_log_context(status=status, path=path)},
            )
            raise ConfigurationError("conversation platform rejected the API token")
        if status >= 400:
            raise PlatformError(f"conversation platform returned {status} for {method} {path}", status)

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise PlatformError("conversation platform returned invalid JSON", status) from e

    # contacts

    def search_contact(self, phone: str) -> dict[str, Any] | None:
        """Find a contact whose phone_number matches (digit comparison)."""
        data = self._request("GET", "/contacts/search", params={"q": phone})
        for contact in _payload_list(data):
            if digits_only(contact.get("phone_number") or "") == phone:
                return contact
        return None

    def create_contact(self, phone: str, name: str | None) -> dict[str, Any]:
        """Create a contact, or return the existing one on a duplicate (422)."""
        body = {
            "inbox_id": self.inbox_id,
            "name": name or f"+{phone}",
            "phone_number": f"+{phone}",
        }
        try:
            data = self._request("POST", "/contacts", json=body)
        except PlatformError as e:
            if e.http_status != 422:
                raise
            existing = self.search_contact(phone)
            if existing is None:
                raise
            logger.info(
                "chatwoot contact already existed",
                extra={"extra_fields": safe_log_context(phone_hash=hash_identifier(phone))},
            )
            return existing

        payload = data.get("payload", data) if isinstance(data, dict) else {}
        contact = payload.get("contact", payload) if isinstance(payload, dict) else {}
        if not contact.get("id"):
            raise PlatformError("contact created without id", 200)
        return contact

    def update_contact(
        self,
        contact_id: str,
        *,
        name: str | None = None,
        phone: str | None = None,
        email: str | None = None,
        additional_attributes: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Overwrite the contact fields that are given. None leaves a field untouched."""
        body: dict[str, Any] = {}
        if name:
            body["name"] = name
        if phone:
            body["phone_number"] = f"+{phone}"
        if email:
            body["email"] = email
        if additional_attributes:
            body["additional_attributes"] = additional_attributes
        data = self._request("PUT", f"/contacts/{contact_id}", json=body)
        payload = data.get("payload", data) if isinstance(data, dict) else {}
        return payload.get("contact", payload) if isinstance(payload, dict) else {}

    # conversations

    def list_contact_conversations(self, contact_id: str) -> list[dict[str, Any]]:
        data = self._request("GET", f"/contacts/{contact_id}/conversations")
        return _payload_list(data)

    def find_open_conversation(self, contact_id: str) -> dict[str, Any] | None:
        """Newest open conversation of the contact in our inbox."""
        candidates = [
            c
            for c in self.list_contact_conversations(contact_id)
            if c.get("status", "open") == "open"
            and str(c.get("inbox_id", self.inbox_id)) == self.inbox_id
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda c: (c.get("last_activity_at") or 0, c.get("id") or 0))

    def create_conversation(self, contact_id: str) -> dict[str, Any]:
        data = self._request(
            "POST",
            "/conversations",
            json={"contact_id": contact_id, "inbox_id": self.inbox_id},
        )
        if not isinstance(data, dict) or not data.get("id"):
            raise PlatformError("conversation created without id", 200)
        return data

    # messages

    def create_message(
        self,
        conversation_id: str,
        content: str,
        *,
        message_type: str = "incoming",
        source_id: str | None = None,
        attachment_url: str | None = None,
        private: bool = False,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "content": content,
            "message_type": message_type,
            "private": private,
        }
        if source_id:
            body["source_id"] = source_id
        if attachment_url:
            body["content_attributes"] = {"external_attachment_url": attachment_url}
        return self._request("POST", f"/conversations/{conversation_id}/messages", json=body)


def _payload_list(data: Any) -> list[dict[str, Any]]:
    if isinstance(data, dict):
        payload = data.get("payload", [])
    else:
        payload = data
    return [item for item in payload or [] if isinstance(item, dict)]
