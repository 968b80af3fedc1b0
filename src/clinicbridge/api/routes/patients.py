"""Patient lookups used by the inbox sidebar and contact sync."""

from fastapi import APIRouter, Depends, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from clinicbridge.api.credentials import require_service_credential
from clinicbridge.api.deps import get_bridge
from clinicbridge.phones import normalize_phone, primary_phone

router = APIRouter(
    prefix="/api/patients",
    tags=["patients"],
    dependencies=[Depends(require_service_credential)],
)


@router.get("/search-by-phone")
def search_by_phone(request: Request, phone: str = Query(...)) -> JSONResponse:
    bridge = get_bridge(request)
    normalized = normalize_phone(phone, bridge.settings.default_country_code)

    patient = bridge.store.find_patient_by_phone(normalized)
    if patient is None:
        return JSONResponse(status_code=404, content={"success": False, "error": "Patient not found"})
    return JSONResponse(content={"success": True, "data": jsonable_encoder(patient)})


@router.get("/{patient_id}/contacts")
def patient_contacts(request: Request, patient_id: str) -> JSONResponse:
    """Contact card of one patient, in the shape pushed to the platform contact."""
    bridge = get_bridge(request)
    patient = bridge.store.get_patient(patient_id)
    if patient is None:
        return JSONResponse(status_code=404, content={"success": False, "error": "Patient not found"})

    contact = {
        "id": patient["id"],
        "name": patient["name"],
        "primary_phone": patient.get("phone"),
        "email": patient.get("email"),
        "birth_date": patient.get("birthdate"),
        "phones": patient.get("phones") or [],
        "whatsapp_phone": primary_phone(patient),
    }
    return JSONResponse(content={"success": True, "data": jsonable_encoder(contact)})
