"""Worker/internal routes (APP_ROLE=worker)."""

from fastapi import APIRouter

from clinicbridge.api.routes import tasks_automations

router = APIRouter()
router.include_router(tasks_automations.router)


@router.get("/tasks/health")
def tasks_health() -> dict:
    """Tasks subsystem health check."""
    return {"status": "ok", "subsystem": "tasks"}
