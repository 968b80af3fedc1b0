"""Shared pytest fixtures for Clinic Bridge tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from clinicbridge.api.factory import create_app  # noqa: E402
from clinicbridge.automations.templates import AUTOMATIONS, DEFAULT_MESSAGES, AutomationConfig  # noqa: E402
from clinicbridge.bridge import assemble_bridge  # noqa: E402
from clinicbridge.config import BridgeSettings  # noqa: E402
from fakes import API_KEY, FakePlatform, FakeProvider, InMemoryStore  # noqa: E402


def all_automations_enabled() -> dict[str, AutomationConfig]:
    return {name: AutomationConfig(name, True, DEFAULT_MESSAGES[name]) for name in AUTOMATIONS}


@pytest.fixture
def settings() -> BridgeSettings:
    return BridgeSettings(
        database_url="postgresql://bridge@localhost/bridge_test",
        internal_api_key=API_KEY,
        uazapi_url="https://uazapi.test",
        uazapi_api_key="uazapi-secret-token",
        chatwoot_base_url="https://chatwoot.test",
        chatwoot_account_id="1",
        chatwoot_api_token="chatwoot-secret-token",
        chatwoot_inbox_id="1",
        dispatch_max_attempts=3,
        dispatch_backoff_seconds=0.5,
        realtime_enabled=False,
        automations=all_automations_enabled(),
    )


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def platform() -> FakePlatform:
    return FakePlatform()


@pytest.fixture
def sleeps() -> list[float]:
    """Backoff delays the dispatcher asked for (nothing actually sleeps)."""
    return []


@pytest.fixture
def bridge(settings, store, provider, platform, sleeps):
    return assemble_bridge(settings, store, provider, platform, sleep=sleeps.append)


@pytest.fixture
def client(bridge) -> TestClient:
    return TestClient(create_app(role="public", bridge=bridge))


@pytest.fixture
def worker_client(bridge) -> TestClient:
    return TestClient(create_app(role="worker", bridge=bridge))
