"""Outbound messages requested by the clinic UI."""

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict

from clinicbridge.api.credentials import require_service_credential
from clinicbridge.api.deps import get_bridge

router = APIRouter(
    prefix="/api/messages",
    tags=["messages"],
    dependencies=[Depends(require_service_credential)],
)


class SendMessageRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    phone: str
    message: str = ""
    media_url: str | None = None
    name: str | None = None


@router.post("/send")
def send_message(body: SendMessageRequest, request: Request) -> dict:
    """Send a WhatsApp message and mirror it into the inbox.

    Returns:
        {"success": true, "data": {job_id, provider_message_id, attempts, sent_at}}.
        Errors use the shared {"success": false, "error": ...} envelope.
    """
    bridge = get_bridge(request)
    receipt = bridge.messaging.send_to_contact(
        body.phone,
        body.message,
        body.media_url,
        display_name=body.name,
    )
    return {"success": True, "data": receipt.to_dict()}
