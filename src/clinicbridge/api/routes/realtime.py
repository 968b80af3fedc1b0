"""Server-Sent Events stream of store changes for the inbox UI."""

import asyncio
import json

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse

from clinicbridge.api.credentials import require_service_credential
from clinicbridge.api.deps import get_bridge
from clinicbridge.errors import UpstreamUnavailable
from clinicbridge.models import ChangeEvent
from clinicbridge.observability.logging import get_logger

router = APIRouter(
    prefix="/api/realtime",
    tags=["realtime"],
    dependencies=[Depends(require_service_credential)],
)

logger = get_logger(__name__)

KEEPALIVE_SECONDS = 15.0
CLIENT_QUEUE_SIZE = 100


def format_sse(event: ChangeEvent) -> str:
    data = json.dumps(event.to_dict(), default=str)
    return f"event: {event.table}\ndata: {data}\n\n"


@router.get("/status")
def realtime_status(request: Request) -> dict:
    fanout = get_bridge(request).realtime
    if fanout is None:
        return {"success": True, "data": {"state": "disabled"}}
    return {"success": True, "data": fanout.status()}


@router.get("/stream")
async def stream(
    request: Request,
    table: str | None = Query(None),
    user_id: str | None = Query(None),
) -> StreamingResponse:
    fanout = get_bridge(request).realtime
    if fanout is None:
        raise UpstreamUnavailable("realtime is disabled")

    loop = asyncio.get_running_loop()
    pending: asyncio.Queue = asyncio.Queue(maxsize=CLIENT_QUEUE_SIZE)

    def _put(event: ChangeEvent) -> None:
        if pending.full():
            logger.warning("sse client too slow, event dropped")
            return
        pending.put_nowait(event)

    def _listener(event: ChangeEvent) -> None:
        # Called on the fan-out dispatcher thread
        loop.call_soon_threadsafe(_put, event)

    subscription = fanout.subscribe(_listener, table=table, user_id=user_id)

    async def events():
        try:
            yield ": connected\n\n"
            while not await request.is_disconnected():
                try:
                    event = await asyncio.wait_for(pending.get(), timeout=KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                yield format_sse(event)
        finally:
            subscription.unsubscribe()

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
