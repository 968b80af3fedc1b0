"""Bridge container - wires the services together once per process.

Stored on app.state.bridge; routes reach services through it instead of
module-level singletons, so tests can build a Bridge around fakes.
"""

from __future__ import annotations

from dataclasses import dataclass

from .automations.scheduler import EngagementScheduler
from .automations.templates import AutomationSettings
from .chatwoot.client import ChatwootClient
from .config import BridgeSettings
from .dispatch import OutboundDispatcher, Provider
from .infra.locks import KeyedLocks
from .infra.pg_store import PgStore
from .messaging import MessagingService
from .realtime.fanout import RealtimeFanout
from .realtime.pg_transport import PgNotifyTransport
from .store import Store
from .sync import ConversationSyncEngine
from .webhooks.processor import WebhookProcessor
from .whatsapp.uazapi import UazapiClient


@dataclass
class Bridge:
    settings: BridgeSettings
    store: Store
    sync: ConversationSyncEngine
    dispatcher: OutboundDispatcher
    messaging: MessagingService
    scheduler: EngagementScheduler
    processor: WebhookProcessor
    realtime: RealtimeFanout | None = None


def assemble_bridge(
    settings: BridgeSettings,
    store: Store,
    provider: Provider,
    platform: ChatwootClient,
    *,
    realtime: RealtimeFanout | None = None,
    sleep=None,
) -> Bridge:
    """Wire services around the given collaborators (real or fake)."""
    cc = settings.default_country_code
    sync = ConversationSyncEngine(
        store, platform, clinic_id=settings.clinic_id, country_code=cc, locks=KeyedLocks()
    )
    dispatcher_kwargs = {} if sleep is None else {"sleep": sleep}
    dispatcher = OutboundDispatcher(
        store,
        provider,
        max_attempts=settings.dispatch_max_attempts,
        backoff_seconds=settings.dispatch_backoff_seconds,
        country_code=cc,
        **dispatcher_kwargs,
    )
    messaging = MessagingService(store, sync, dispatcher, country_code=cc)
    scheduler = EngagementScheduler(
        store,
        messaging,
        AutomationSettings(settings.automations),
        locks=KeyedLocks(),
        timezone=settings.clinic_timezone,
        confirmation_days_ahead=settings.confirmation_days_ahead,
    )
    processor = WebhookProcessor(store, sync, dispatcher, messaging, country_code=cc)
    return Bridge(
        settings=settings,
        store=store,
        sync=sync,
        dispatcher=dispatcher,
        messaging=messaging,
        scheduler=scheduler,
        processor=processor,
        realtime=realtime,
    )


def build_bridge(settings: BridgeSettings) -> Bridge:
    """Production wiring: PostgreSQL, Uazapi, Chatwoot, LISTEN/NOTIFY."""
    store = PgStore(
        settings.database_url,
        timeout_seconds=settings.store_timeout_seconds,
        country_code=settings.default_country_code,
    )
    provider = UazapiClient(
        settings.uazapi_url,
        settings.uazapi_api_key,
        timeout=settings.provider_timeout_seconds,
    )
    platform = ChatwootClient(
        settings.chatwoot_base_url,
        settings.chatwoot_account_id,
        settings.chatwoot_api_token,
        settings.chatwoot_inbox_id,
        timeout=settings.provider_timeout_seconds,
    )

    realtime = None
    if settings.realtime_enabled:
        dsn = settings.database_url
        realtime = RealtimeFanout(
            lambda: PgNotifyTransport(dsn, connect_timeout=settings.store_timeout_seconds),
            queue_size=settings.realtime_queue_size,
        )

    return assemble_bridge(settings, store, provider, platform, realtime=realtime)
