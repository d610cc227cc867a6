"""Shared pytest fixtures for faturabot tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402

# Settings read from the environment; tests start from defaults
_SETTINGS_ENV = (
    "MESSAGE_FORMAT",
    "SESSION_TIMEOUT_MINUTES",
    "ERP_BASE_URL",
    "ERP_API_TOKEN",
    "ERP_TIMEOUT_SECONDS",
    "GATEWAY_MAX_ATTEMPTS",
    "GATEWAY_RETRY_DELAY_SECONDS",
    "EVOLUTION_BASE_URL",
    "EVOLUTION_INSTANCE",
    "EVOLUTION_API_KEY",
    "SEND_PACING_SECONDS",
    "DOCUMENT_PACING_SECONDS",
    "MEGAZAP_MENU_UUID",
    "MEGAZAP_CALLBACK_URL",
    "SUPPORT_PHONE",
    "PERSIST_TRANSCRIPTS",
    "DB_PASSWORD",
)


@pytest.fixture(autouse=True)
def _clean_settings_env(monkeypatch):
    """Remove settings variables so each test controls its own environment."""
    for name in _SETTINGS_ENV:
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture
def clock():
    from tests.helpers import FakeClock

    return FakeClock()


@pytest.fixture
def sleeps():
    """Records requested sleeps instead of sleeping."""
    calls: list[float] = []

    def sleep(seconds: float) -> None:
        calls.append(seconds)

    sleep.calls = calls
    return sleep
