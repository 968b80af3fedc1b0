"""Error taxonomy shared by every bridge component.

Each error carries the HTTP status the API layer answers with. Webhook
sources never see these: webhook routes always acknowledge with 200.
"""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for all bridge failures."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigurationError(BridgeError):
    """Required configuration is missing. Operator must fix."""

    status_code = 500


class Unauthorized(BridgeError):
    """Caller credential absent or wrong."""

    status_code = 401


class MalformedPayload(BridgeError):
    """Payload shape cannot be mapped to a canonical event or request."""

    status_code = 400


class UpstreamUnavailable(BridgeError):
    """Store, provider or conversation platform unreachable, timed out or 5xx.

    Safe to retry with the same idempotency key.
    """

    status_code = 503


class RejectedByProvider(BridgeError):
    """Provider refused the message (4xx). Never retried."""

    status_code = 422

    def __init__(self, reason: str, http_status: int | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.http_status = http_status


class DeliveryFailed(BridgeError):
    """Retry budget exhausted. Terminal, surfaced to a human."""

    status_code = 502

    def __init__(self, message: str, attempts: int, job_id: int | None = None) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.job_id = job_id


class PlatformError(BridgeError):
    """Conversation platform answered with an unexpected 4xx."""

    status_code = 502

    def __init__(self, message: str, http_status: int) -> None:
        super().__init__(message)
        self.http_status = http_status


class IgnoredEvent(Exception):
    """Valid webhook the bridge deliberately does not act on.

    Not a BridgeError: it never reaches a caller, the webhook is simply
    acknowledged.
    """
