"""Webhook Normalizer - one canonical event shape for every source."""

from typing import Any, Callable

from clinicbridge.chatwoot.adapter import parse_platform
from clinicbridge.errors import MalformedPayload
from clinicbridge.models import InboundEvent
from clinicbridge.phones import DEFAULT_COUNTRY_CODE
from clinicbridge.whatsapp.uazapi_adapter import parse_whatsapp

from .internal_adapter import parse_internal

Parser = Callable[[dict[str, Any], str], InboundEvent]

PARSERS: dict[str, Parser] = {
    "whatsapp": parse_whatsapp,
    "conversation_platform": parse_platform,
    "internal": parse_internal,
}


def normalize(
    source: str,
    payload: Any,
    country_code: str = DEFAULT_COUNTRY_CODE,
) -> InboundEvent:
    """Normalize a raw webhook payload.

    Raises:
        MalformedPayload: Unknown source, non-object body or unmappable shape.
        IgnoredEvent: Valid payload that needs no action.
    """
    parser = PARSERS.get(source)
    if parser is None:
        raise MalformedPayload(f"unknown webhook source: {source}")
    if not isinstance(payload, dict):
        raise MalformedPayload("webhook body must be a JSON object")
    return parser(payload, country_code)
