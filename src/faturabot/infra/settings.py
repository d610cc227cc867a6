"""Runtime settings loaded from environment variables.

The active provider is a deployment-time choice: MESSAGE_FORMAT selects the
inbound webhook shape and the outbound channel ("auto" detects it per body).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Literal

from faturabot.observability.logging import get_logger
from faturabot.observability.redaction import safe_log_context

logger = get_logger(__name__)

MessageFormat = Literal["evolution", "megazap", "auto"]

_TRUE_VALUES = ("1", "true", "yes", "sim", "on")


@dataclass(frozen=True)
class ErpConfig:
    """ERP REST gateway configuration."""

    base_url: str = ""
    api_token: str = ""
    timeout_seconds: float = 30.0


@dataclass(frozen=True)
class EvolutionConfig:
    """Evolution API configuration (sequential channel)."""

    base_url: str = ""
    instance: str = ""
    api_key: str = ""

    def is_complete(self) -> bool:
        return bool(self.base_url and self.instance and self.api_key)


@dataclass(frozen=True)
class MegazapConfig:
    """MegaZap configuration (consolidated channel)."""

    menu_uuid: str | None = None
    callback_url: str | None = None


@dataclass(frozen=True)
class Settings:
    """Application settings.

    Attributes:
        message_format: Provider shape for inbound webhooks and outbound channel.
        session_timeout_minutes: Inactivity window after which a session is discarded.
        gateway_max_attempts: Attempts per external call (first try included).
        gateway_retry_delay: Base delay in seconds; attempt N waits N * delay.
        send_pacing_seconds: Delay between a text notice and its attachment.
        document_pacing_seconds: Delay after each attachment in sequential mode.
        support_phone: Phone shown in the support handoff message.
        persist_transcripts: Whether conversation transcripts go to PostgreSQL.
    """

    message_format: MessageFormat = "evolution"
    session_timeout_minutes: int = 30
    gateway_max_attempts: int = 3
    gateway_retry_delay: float = 1.0
    send_pacing_seconds: float = 1.0
    document_pacing_seconds: float = 3.0
    support_phone: str = ""
    persist_transcripts: bool = True
    erp: ErpConfig = field(default_factory=ErpConfig)
    evolution: EvolutionConfig = field(default_factory=EvolutionConfig)
    megazap: MegazapConfig = field(default_factory=MegazapConfig)


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(
            "invalid integer setting, using default",
            extra={"extra_fields": safe_log_context(setting=name, default=default)},
        )
        return default
    return value if value > 0 else default


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning(
            "invalid numeric setting, using default",
            extra={"extra_fields": safe_log_context(setting=name, default=default)},
        )
        return default
    return value if value >= 0 else default


def _bool_env(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in _TRUE_VALUES


def _message_format() -> MessageFormat:
    raw = os.environ.get("MESSAGE_FORMAT", "evolution").strip().lower()
    # Numeric codes used by older deployments
    raw = {"1": "evolution", "2": "megazap"}.get(raw, raw)
    if raw not in ("evolution", "megazap", "auto"):
        logger.warning(
            "unknown MESSAGE_FORMAT, falling back to evolution",
            extra={"extra_fields": safe_log_context(message_format=raw)},
        )
        return "evolution"
    return raw  # type: ignore[return-value]


def load_settings() -> Settings:
    """Build Settings from the environment.

    Returns:
        Settings with defaults applied for anything missing or malformed.
    """
    erp = ErpConfig(
        base_url=os.environ.get("ERP_BASE_URL", "").rstrip("/"),
        api_token=os.environ.get("ERP_API_TOKEN", ""),
        timeout_seconds=_float_env("ERP_TIMEOUT_SECONDS", 30.0),
    )
    evolution = EvolutionConfig(
        base_url=os.environ.get("EVOLUTION_BASE_URL", "").rstrip("/"),
        instance=os.environ.get("EVOLUTION_INSTANCE", ""),
        api_key=os.environ.get("EVOLUTION_API_KEY", ""),
    )
    megazap = MegazapConfig(
        menu_uuid=os.environ.get("MEGAZAP_MENU_UUID") or None,
        callback_url=os.environ.get("MEGAZAP_CALLBACK_URL") or None,
    )
    return Settings(
        message_format=_message_format(),
        session_timeout_minutes=_int_env("SESSION_TIMEOUT_MINUTES", 30),
        gateway_max_attempts=_int_env("GATEWAY_MAX_ATTEMPTS", 3),
        gateway_retry_delay=_float_env("GATEWAY_RETRY_DELAY_SECONDS", 1.0),
        send_pacing_seconds=_float_env("SEND_PACING_SECONDS", 1.0),
        document_pacing_seconds=_float_env("DOCUMENT_PACING_SECONDS", 3.0),
        support_phone=os.environ.get("SUPPORT_PHONE", ""),
        persist_transcripts=_bool_env("PERSIST_TRANSCRIPTS", True),
        erp=erp,
        evolution=evolution,
        megazap=megazap,
    )
