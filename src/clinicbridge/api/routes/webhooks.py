"""Inbound webhooks from the WhatsApp provider, the conversation platform and the store.

Sources never see processing errors: once the source check passes, the
answer is 200 {"status": "ok"} whether the event was processed, a
duplicate, ignored or rejected. Failures are recorded on the receipt.
"""

import json

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from clinicbridge.api.credentials import check_webhook_source
from clinicbridge.api.deps import get_bridge
from clinicbridge.models import EVENT_SOURCES
from clinicbridge.observability.logging import get_logger
from clinicbridge.observability.redaction import safe_log_context

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

logger = get_logger(__name__)


@router.post("/{source}")
async def receive_webhook(source: str, request: Request) -> JSONResponse:
    if source not in EVENT_SOURCES:
        return JSONResponse(status_code=404, content={"success": False, "error": "unknown webhook source"})

    check_webhook_source(source, request)
    bridge = get_bridge(request)

    raw = await request.body()
    try:
        payload = json.loads(raw) if raw else None
    except ValueError:
        logger.warning("invalid json body", extra={"extra_fields": safe_log_context(source=source)})
        payload = {"_raw": raw.decode("utf-8", errors="replace")[:2000]}

    outcome = await run_in_threadpool(bridge.processor.process, source, payload)
    logger.info(
        "webhook acknowledged",
        extra={"extra_fields": safe_log_context(source=source, outcome=outcome)},
    )
    return JSONResponse(status_code=200, content={"status": "ok"})
