"""Bridge settings loaded from the environment.

Settings are read once at startup. A missing required variable raises
ConfigurationError listing every missing name, so a misconfigured process
never starts serving.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import Mapping
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .automations.templates import DEFAULT_TIMEZONE, AutomationConfig, load_automation_configs
from .errors import ConfigurationError
from .observability.redaction import mask_secret

REQUIRED_ENV = (
    "DATABASE_URL",
    "INTERNAL_API_KEY",
    "UAZAPI_URL",
    "UAZAPI_API_KEY",
    "CHATWOOT_BASE_URL",
    "CHATWOOT_ACCOUNT_ID",
    "CHATWOOT_API_TOKEN",
    "CHATWOOT_INBOX_ID",
)

_TRUTHY = {"1", "true", "yes", "on"}


def _flag(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in _TRUTHY


def _number(env: Mapping[str, str], name: str, default: float, cast=float):
    raw = env.get(name)
    if raw is None or raw == "":
        return cast(default)
    try:
        return cast(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be numeric") from None


@dataclass(frozen=True)
class BridgeSettings:
    """Runtime configuration. Secrets are excluded from repr."""

    database_url: str = field(default="", repr=False)
    internal_api_key: str = field(default="", repr=False)
    uazapi_url: str = ""
    uazapi_api_key: str = field(default="", repr=False)
    chatwoot_base_url: str = ""
    chatwoot_account_id: str = ""
    chatwoot_api_token: str = field(default="", repr=False)
    chatwoot_inbox_id: str = ""
    clinic_id: str = "default"
    default_country_code: str = "55"
    uazapi_webhook_token: str = field(default="", repr=False)
    chatwoot_webhook_token: str = field(default="", repr=False)
    provider_timeout_seconds: float = 10.0
    store_timeout_seconds: float = 5.0
    dispatch_max_attempts: int = 3
    dispatch_backoff_seconds: float = 0.5
    realtime_enabled: bool = True
    realtime_queue_size: int = 1000
    confirmation_days_ahead: int = 2
    clinic_timezone: str = DEFAULT_TIMEZONE
    app_role: str = "public"
    automations: Mapping[str, AutomationConfig] = field(default_factory=load_automation_configs, repr=False)

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "BridgeSettings":
        """Build settings from environment variables.

        Args:
            env: Mapping to read from (defaults to os.environ).

        Raises:
            ConfigurationError: If any required variable is missing or a
                numeric variable cannot be parsed.
        """
        env = os.environ if env is None else env

        missing = [name for name in REQUIRED_ENV if not env.get(name)]
        if missing:
            raise ConfigurationError(
                f"Missing required configuration: {', '.join(missing)}"
            )

        settings = cls(
            database_url=env["DATABASE_URL"],
            internal_api_key=env["INTERNAL_API_KEY"],
            uazapi_url=env["UAZAPI_URL"].rstrip("/"),
            uazapi_api_key=env["UAZAPI_API_KEY"],
            chatwoot_base_url=env["CHATWOOT_BASE_URL"].rstrip("/"),
            chatwoot_account_id=env["CHATWOOT_ACCOUNT_ID"],
            chatwoot_api_token=env["CHATWOOT_API_TOKEN"],
            chatwoot_inbox_id=env["CHATWOOT_INBOX_ID"],
            clinic_id=env.get("CLINIC_ID") or "default",
            default_country_code=env.get("DEFAULT_COUNTRY_CODE") or "55",
            uazapi_webhook_token=env.get("UAZAPI_WEBHOOK_TOKEN", ""),
            chatwoot_webhook_token=env.get("CHATWOOT_WEBHOOK_TOKEN", ""),
            provider_timeout_seconds=_number(env, "PROVIDER_TIMEOUT_SECONDS", 10.0),
            store_timeout_seconds=_number(env, "STORE_TIMEOUT_SECONDS", 5.0),
            dispatch_max_attempts=_number(env, "DISPATCH_MAX_ATTEMPTS", 3, int),
            dispatch_backoff_seconds=_number(env, "DISPATCH_BACKOFF_SECONDS", 0.5),
            realtime_enabled=_flag(env, "REALTIME_ENABLED", True),
            realtime_queue_size=_number(env, "REALTIME_QUEUE_SIZE", 1000, int),
            confirmation_days_ahead=_number(env, "AUTOMATION_CONFIRMATION_DAYS_AHEAD", 2, int),
            clinic_timezone=env.get("CLINIC_TIMEZONE") or DEFAULT_TIMEZONE,
            app_role=env.get("APP_ROLE") or "public",
            automations=load_automation_configs(env),
        )

        if settings.dispatch_max_attempts < 1:
            raise ConfigurationError("DISPATCH_MAX_ATTEMPTS must be at least 1")

        try:
            ZoneInfo(settings.clinic_timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ConfigurationError(f"Unknown CLINIC_TIMEZONE: {settings.clinic_timezone}") from None

        return settings

    def with_overrides(self, **changes) -> "BridgeSettings":
        """Copy with some fields replaced (tests, role override)."""
        return replace(self, **changes)

    def describe(self) -> dict[str, str]:
        """Diagnostic view with secrets masked."""
        return {
            "uazapi_url": self.uazapi_url,
            "uazapi_api_key": mask_secret(self.uazapi_api_key),
            "chatwoot_base_url": self.chatwoot_base_url,
            "chatwoot_account_id": self.chatwoot_account_id,
            "chatwoot_api_token": mask_secret(self.chatwoot_api_token),
            "internal_api_key": mask_secret(self.internal_api_key),
            "clinic_id": self.clinic_id,
            "app_role": self.app_role,
            "automations_enabled": ",".join(sorted(n for n, c in self.automations.items() if c.enabled)),
        }
