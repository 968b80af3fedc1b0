"""ASGI entry point: uvicorn clinicbridge.api.app:app"""

from clinicbridge.api.factory import create_app

app = create_app()
