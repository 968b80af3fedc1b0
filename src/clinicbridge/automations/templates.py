"""Built-in automation settings and message templates.

Each automation is configured from the environment:
AUTOMATION_<PREFIX>_ENABLED ("true" to enable) and
AUTOMATION_<PREFIX>_MESSAGE (template override).

Placeholders: {{nome}} (patient name), {{data}} and {{hora}} (appointment
date and time in the clinic timezone).
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Any, Mapping
from zoneinfo import ZoneInfo

from clinicbridge.errors import MalformedPayload

DEFAULT_TIMEZONE = "America/Sao_Paulo"

_SIGNATURE = "\n\nAtenciosamente,\nClínica Audicare"

DEFAULT_MESSAGES: dict[str, str] = {
    "appointment_created": (
        "Olá {{nome}}! 👋\n\nSeu agendamento foi realizado com sucesso para {{data}} às {{hora}}."
        "\n\nQualquer dúvida, pode nos chamar!" + _SIGNATURE
    ),
    "appointment_confirmation": (
        "Olá {{nome}}! 👋\n\nLembrando que sua consulta está agendada para {{data}} às {{hora}}."
        "\n\nPor favor, responda SIM para confirmar sua presença ou entre em contato para reagendar."
        + _SIGNATURE
    ),
    "welcome_checkin": (
        "Olá {{nome}}! 👋\n\nVimos que você chegou para sua consulta. Estamos preparando tudo "
        "para te atender!\n\nSe precisar de algo, é só falar." + _SIGNATURE
    ),
    "goodbye_checkout": (
        "Olá {{nome}}! 👋\n\nObrigado por confiar na Clínica Audicare!\n\nEsperamos te ver "
        "novamente em breve. Cuide-se bem! 💙" + _SIGNATURE
    ),
    "patient_registered": (
        "Olá {{nome}}! 👋\n\nSeja bem-vindo(a) à Clínica Audicare. Por aqui você recebe "
        "lembretes das suas consultas e pode falar com a nossa equipe." + _SIGNATURE
    ),
    "birthday": (
        "🎉 Feliz Aniversário, {{nome}}! 🎂\n\nQue seu dia seja repleto de alegria e saúde! "
        "Que tal agendar uma consulta para verificar seus aparelhos?" + _SIGNATURE
    ),
}

# Home visits ask for the address instead of the generic booking message
HOME_VISIT_LOCATION = "domiciliar"
HOME_VISIT_MESSAGE = (
    "Olá {{nome}}, seu agendamento domiciliar foi realizado com sucesso para dia {{data}} "
    "às {{hora}}.\n\nPor gentileza, nos envie o endereço e a localização.\n\n"
    "Qualquer dúvida, pode nos chamar! 🦻"
)

ENV_PREFIXES: dict[str, str] = {
    "appointment_created": "APPOINTMENT_CREATED",
    "appointment_confirmation": "CONFIRMATION",
    "welcome_checkin": "WELCOME",
    "goodbye_checkout": "GOODBYE",
    "patient_registered": "PATIENT_REGISTERED",
    "birthday": "BIRTHDAY",
}

AUTOMATIONS: tuple[str, ...] = tuple(DEFAULT_MESSAGES)


@dataclass(frozen=True)
class AutomationConfig:
    name: str
    enabled: bool
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "enabled": self.enabled, "message": self.message}


def load_automation_configs(env: Mapping[str, str] | None = None) -> dict[str, AutomationConfig]:
    """Read every built-in automation's flag and template. Disabled unless set."""
    env = os.environ if env is None else env
    configs = {}
    for name in AUTOMATIONS:
        prefix = f"AUTOMATION_{ENV_PREFIXES[name]}"
        configs[name] = AutomationConfig(
            name=name,
            enabled=(env.get(f"{prefix}_ENABLED") or "").strip().lower() == "true",
            message=env.get(f"{prefix}_MESSAGE") or DEFAULT_MESSAGES[name],
        )
    return configs


class AutomationSettings:
    """Runtime-editable automation configs (GET/PUT /api/automations/settings).

    Updates are process-local; the environment stays the startup default.
    """

    def __init__(self, configs: Mapping[str, AutomationConfig]) -> None:
        self._lock = threading.Lock()
        self._configs = dict(configs)

    def get(self, name: str) -> AutomationConfig:
        with self._lock:
            config = self._configs.get(name)
        if config is None:
            raise MalformedPayload(f"unknown automation: {name}")
        return config

    def all(self) -> dict[str, AutomationConfig]:
        with self._lock:
            return dict(self._configs)

    def update(self, changes: Mapping[str, Mapping[str, Any]]) -> dict[str, AutomationConfig]:
        """Apply {name: {"enabled": bool, "message": str}} changes atomically."""
        with self._lock:
            updated = dict(self._configs)
            for name, fields in changes.items():
                if name not in updated:
                    raise MalformedPayload(f"unknown automation: {name}")
                if not isinstance(fields, Mapping):
                    raise MalformedPayload(f"settings for {name} must be an object")
                config = updated[name]
                if "enabled" in fields:
                    if not isinstance(fields["enabled"], bool):
                        raise MalformedPayload(f"{name}.enabled must be a boolean")
                    config = replace(config, enabled=fields["enabled"])
                if "message" in fields:
                    message = fields["message"]
                    if not isinstance(message, str) or not message.strip():
                        raise MalformedPayload(f"{name}.message must be a non-empty string")
                    config = replace(config, message=message)
                updated[name] = config
            self._configs = updated
            return dict(updated)


def _as_datetime(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def local_start(appointment: Mapping[str, Any], timezone: str = DEFAULT_TIMEZONE) -> datetime | None:
    """Appointment start in the clinic timezone (naive values are taken as UTC)."""
    start = _as_datetime(appointment.get("start_time"))
    if start is None:
        return None
    if start.tzinfo is None:
        start = start.replace(tzinfo=ZoneInfo("UTC"))
    return start.astimezone(ZoneInfo(timezone))


def render(
    template: str,
    patient: Mapping[str, Any] | None = None,
    appointment: Mapping[str, Any] | None = None,
    timezone: str = DEFAULT_TIMEZONE,
) -> str:
    """Fill {{nome}}, {{data}} and {{hora}}. Unknown placeholders stay as is."""
    message = template
    name = (patient or {}).get("name") or "Paciente"
    message = message.replace("{{nome}}", str(name))

    start = local_start(appointment, timezone) if appointment else None
    if start is not None:
        message = message.replace("{{data}}", start.strftime("%d/%m/%Y"))
        message = message.replace("{{hora}}", start.strftime("%H:%M"))
    return message


def template_for(config: AutomationConfig, appointment: Mapping[str, Any] | None) -> str:
    if (
        config.name == "appointment_created"
        and appointment
        and str(appointment.get("location") or "").strip().lower() == HOME_VISIT_LOCATION
    ):
        return HOME_VISIT_MESSAGE
    return config.message
