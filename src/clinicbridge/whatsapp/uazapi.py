"""Outbound WhatsApp messaging via the Uazapi gateway.

Security: NEVER log the recipient number, the text or the token. Only log
hashes and lengths. The token lives on the client and is only ever placed
in the request headers.
"""

from typing import Any

import requests

from clinicbridge.errors import RejectedByProvider, UpstreamUnavailable
from clinicbridge.observability.logging import get_logger
from clinicbridge.observability.redaction import hash_identifier, mask_secret, safe_log_context

logger = get_logger(__name__)

# Timeout for HTTP requests (seconds)
HTTP_TIMEOUT = 10.0

MEDIA_TYPES = {
    "jpg": "image",
    "jpeg": "image",
    "png": "image",
    "webp": "image",
    "mp4": "video",
    "mp3": "audio",
    "ogg": "audio",
    "opus": "audio",
}


def _media_type(media_url: str) -> str:
    """Guess Uazapi media type from the URL extension; documents by default."""
    path = media_url.split("?", 1)[0]
    ext = path.rsplit(".", 1)[-1].lower() if "." in path else ""
    return MEDIA_TYPES.get(ext, "document")


def _error_reason(response: requests.Response) -> str:
    """Best human-readable reason from a provider error response."""
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        for key in ("error", "message", "detail"):
            value = data.get(key)
            if value:
                return str(value)
    text = (response.text or "").strip()
    return text[:200] or f"provider returned {response.status_code}"


def _message_id(data: Any) -> str | None:
    if not isinstance(data, dict):
        return None
    for key in ("messageid", "messageId", "id"):
        if data.get(key):
            return str(data[key])
    key = data.get("key")
    if isinstance(key, dict) and key.get("id"):
        return str(key["id"])
    return None


class UazapiClient:
    """Single-attempt send against the Uazapi REST API.

    Retry policy belongs to the dispatcher. This client only classifies the
    outcome of one call:
    - 2xx: returns the provider message id (may be None)
    - 5xx, 429, timeout, connection error: UpstreamUnavailable (transient)
    - any other 4xx: RejectedByProvider with the provider's reason
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        timeout: float = HTTP_TIMEOUT,
        session: requests.Session | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._timeout = timeout
        self._session = session or requests.Session()

    def __repr__(self) -> str:
        return f"UazapiClient(base_url={self._base_url!r}, token={mask_secret(self._token)})"

    def _headers(self) -> dict[str, str]:
        return {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "token": self._token,
        }

    def send(self, number: str, text: str, media_url: str | None = None) -> str | None:
        """Send one message.

        Args:
            number: Normalized recipient phone. NEVER logged.
            text: Message text (caption when media_url is set). NEVER logged.
            media_url: Optional public URL of an attachment.

        Returns:
            Provider message id, when the provider returns one.

        Raises:
            UpstreamUnavailable: Transient failure, safe to retry.
            RejectedByProvider: Permanent refusal, must not be retried.
        """
        if media_url:
            path = "/send/media"
            body: dict[str, Any] = {
                "number": number,
                "type": _media_type(media_url),
                "file": media_url,
                "text": text,
            }
        else:
            path = "/send/text"
            body = {"number": number, "text": text}

        log_ctx = safe_log_context(
            to_hash=hash_identifier(number),
            text_len=len(text),
            has_media=bool(media_url),
            provider="uazapi",
        )

        try:
            response = self._session.post(
                f"{self._base_url}{path}",
                json=body,
                headers=self._headers(),
                timeout=self._timeout,
            )
        except requests.Timeout as e:
            logger.warning("uazapi request timed out", extra={"extra_fields": log_ctx})
            raise UpstreamUnavailable("provider timed out") from e
        except requests.RequestException as e:
            logger.warning(
                "uazapi request failed",
                extra={"extra_fields": safe_log_context(**log_ctx, error_type=type(e).__name__)},
            )
            raise UpstreamUnavailable(f"provider unreachable: {type(e).__name__}") from e

        status = response.status_code
        if status >= 500 or status == 429:
            logger.warning(
                "uazapi transient error",
                extra={"extra_fields": safe_log_context(**log_ctx, status=status)},
            )
            raise UpstreamUnavailable(f"provider returned {status}")

        if status >= 400:
            reason = _error_reason(response)
            logger.warning(
                "uazapi rejected message",
                extra={"extra_fields": safe_log_context(**log_ctx, status=status)},
            )
            raise RejectedByProvider(reason, http_status=status)

        try:
            data = response.json()
        except ValueError:
            data = None

        provider_message_id = _message_id(data)
        logger.info(
            "uazapi message accepted",
            extra={"extra_fields": safe_log_context(**log_ctx, status=status)},
        )
        return provider_message_id
