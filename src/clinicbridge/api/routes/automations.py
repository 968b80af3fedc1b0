"""Automation endpoints: domain events, manual tests, settings and trigger state."""

from __future__ import annotations

from datetime import date
from typing import Any

from fastapi import APIRouter, Body, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from clinicbridge.api.credentials import require_service_credential
from clinicbridge.api.deps import get_bridge
from clinicbridge.automations.scheduler import DOMAIN_EVENT_TYPES, DomainEvent
from clinicbridge.errors import MalformedPayload

router = APIRouter(
    prefix="/api/automations",
    tags=["automations"],
    dependencies=[Depends(require_service_credential)],
)


class DomainEventRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    event_type: str
    patient_id: str | None = None
    appointment_id: str | None = None
    new_status: str | None = None
    old_status: str | None = None
    occurred_on: date | None = None


class AppointmentStatusRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    new_status: str = Field(alias="newStatus")
    old_status: str | None = Field(default=None, alias="oldStatus")


class TestAutomationRequest(BaseModel):
    phone: str
    data: dict[str, Any] = Field(default_factory=dict)


@router.post("/events")
def dispatch_event(body: DomainEventRequest, request: Request) -> dict:
    if body.event_type not in DOMAIN_EVENT_TYPES:
        raise MalformedPayload(f"unknown domain event: {body.event_type}")
    event = DomainEvent(**body.model_dump())
    outcome = get_bridge(request).scheduler.handle(event)
    return {"success": True, "data": outcome.to_dict()}


@router.post("/appointment-status/{appointment_id}")
def appointment_status_changed(appointment_id: str, body: AppointmentStatusRequest, request: Request) -> dict:
    event = DomainEvent(
        event_type="appointment_status_changed",
        appointment_id=appointment_id,
        new_status=body.new_status,
        old_status=body.old_status,
    )
    outcome = get_bridge(request).scheduler.handle(event)
    return {"success": True, "data": outcome.to_dict()}


@router.post("/test/{automation}")
def test_automation(automation: str, body: TestAutomationRequest, request: Request) -> dict:
    receipt = get_bridge(request).scheduler.test_automation(automation, body.phone, body.data)
    return {"success": True, "data": receipt.to_dict()}


@router.get("/settings")
def get_settings(request: Request) -> dict:
    configs = get_bridge(request).scheduler.settings.all()
    return {"success": True, "data": {name: c.to_dict() for name, c in configs.items()}}


@router.put("/settings")
def update_settings(request: Request, changes: dict[str, Any] = Body(...)) -> dict:
    configs = get_bridge(request).scheduler.settings.update(changes)
    return {"success": True, "data": {name: c.to_dict() for name, c in configs.items()}}


@router.get("/triggers/{trigger_key}")
def get_trigger(trigger_key: str, request: Request) -> JSONResponse:
    trigger = get_bridge(request).store.get_trigger(trigger_key)
    if trigger is None:
        return JSONResponse(
            content={"success": True, "data": {"trigger_key": trigger_key, "fired": False}}
        )
    return JSONResponse(
        content={
            "success": True,
            "data": {
                "trigger_key": trigger.trigger_key,
                "fired": True,
                "automation": trigger.automation,
                "patient_id": trigger.patient_id,
                "fired_at": trigger.fired_at.isoformat(),
            },
        }
    )
