"""Request-scoped access to the process-wide Bridge."""

from fastapi import Request

from clinicbridge.bridge import Bridge
from clinicbridge.errors import ConfigurationError


def get_bridge(request: Request) -> Bridge:
    bridge = getattr(request.app.state, "bridge", None)
    if bridge is None:
        raise ConfigurationError("bridge is not initialised")
    return bridge
