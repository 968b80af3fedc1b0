"""Credential Gate - shared service secret and per-source webhook checks.

Fail-closed: an unconfigured shared secret is a ConfigurationError, never
an implicit allow.
"""

from __future__ import annotations

import hmac

from fastapi import Request

from clinicbridge.errors import ConfigurationError, Unauthorized
from clinicbridge.observability.logging import get_logger
from clinicbridge.observability.redaction import safe_log_context

from .deps import get_bridge

logger = get_logger(__name__)

API_KEY_HEADER = "x-api-key"
API_KEY_QUERY = "api_key"
WHATSAPP_TOKEN_HEADER = "token"
CHATWOOT_TOKEN_HEADER = "X-Chatwoot-Webhook-Token"


def _client_host(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _matches(presented: str | None, expected: str) -> bool:
    if not presented:
        return False
    return hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8"))


def check_service_credential(request: Request, expected: str) -> None:
    """Validate the shared credential from x-api-key or ?api_key=.

    Raises:
        ConfigurationError: The bridge has no shared secret configured.
        Unauthorized: Credential missing or wrong.
    """
    if not expected:
        logger.error("INTERNAL_API_KEY not configured - rejecting request (fail-closed)")
        raise ConfigurationError("service credential is not configured")

    presented = request.headers.get(API_KEY_HEADER) or request.query_params.get(API_KEY_QUERY)
    if not _matches(presented, expected):
        logger.warning(
            "service credential rejected",
            extra={
                "extra_fields": safe_log_context(
                    client_host=_client_host(request),
                    path=request.url.path,
                    credential_present=bool(presented),
                )
            },
        )
        raise Unauthorized("Unauthorized")


def require_service_credential(request: Request) -> None:
    """FastAPI dependency guarding every protected route."""
    check_service_credential(request, get_bridge(request).settings.internal_api_key)


def check_webhook_source(source: str, request: Request) -> None:
    """Source-specific webhook check.

    whatsapp and conversation_platform compare their token only when one is
    configured; internal webhooks need the shared credential.

    Raises:
        Unauthorized: Token present in config but missing or wrong.
    """
    settings = get_bridge(request).settings

    if source == "internal":
        check_service_credential(request, settings.internal_api_key)
        return

    if source == "whatsapp":
        expected = settings.uazapi_webhook_token
        presented = request.headers.get(WHATSAPP_TOKEN_HEADER) or request.query_params.get("token")
    else:
        expected = settings.chatwoot_webhook_token
        presented = request.headers.get(CHATWOOT_TOKEN_HEADER) or request.query_params.get("token")

    if expected and not _matches(presented, expected):
        logger.warning(
            "webhook token mismatch",
            extra={"extra_fields": safe_log_context(source=source, client_host=_client_host(request))},
        )
        raise Unauthorized("Unauthorized")
