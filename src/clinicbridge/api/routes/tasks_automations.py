"""Worker task handlers for the batch automations.

Called by an external scheduler (cron) once a day. Safe to call more than
once: every message is guarded by its trigger key.
"""

from datetime import date

from fastapi import APIRouter, Body, Depends, Request

from clinicbridge.api.credentials import require_service_credential
from clinicbridge.api.deps import get_bridge
from clinicbridge.errors import MalformedPayload
from clinicbridge.infra.time import local_today

router = APIRouter(
    prefix="/tasks/automations",
    tags=["tasks"],
    dependencies=[Depends(require_service_credential)],
)


def _run_date(payload: dict | None, tz_name: str) -> date:
    raw = (payload or {}).get("date")
    if not raw:
        return local_today(tz_name)
    try:
        return date.fromisoformat(str(raw))
    except ValueError:
        raise MalformedPayload("date must be YYYY-MM-DD") from None


@router.post("/appointment-confirmations")
def run_appointment_confirmations(request: Request, payload: dict | None = Body(None)) -> dict:
    bridge = get_bridge(request)
    result = bridge.scheduler.run_appointment_confirmations(_run_date(payload, bridge.settings.clinic_timezone))
    return {"success": True, "data": result.to_dict()}


@router.post("/birthdays")
def run_birthdays(request: Request, payload: dict | None = Body(None)) -> dict:
    bridge = get_bridge(request)
    result = bridge.scheduler.run_birthday_greetings(_run_date(payload, bridge.settings.clinic_timezone))
    return {"success": True, "data": result.to_dict()}
