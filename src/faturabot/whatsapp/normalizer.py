"""Provider-independent entry point for inbound webhook bodies."""

from typing import Any

from . import evolution_adapter, megazap_adapter
from .models import InboundMessage, Provider


def detect_provider(payload: Any) -> Provider:
    """Guess the provider from the body shape.

    `contact.key` together with `channel.type` means MegaZap; an event name
    or a `data.key` object means Evolution, which is also the fallback.
    """
    if isinstance(payload, dict):
        contact = payload.get("contact")
        channel = payload.get("channel")
        if (
            isinstance(contact, dict)
            and contact.get("key")
            and isinstance(channel, dict)
            and channel.get("type")
        ):
            return "megazap"
    return "evolution"


def normalize(payload: Any, provider: str) -> list[InboundMessage]:
    """Convert a webhook body into canonical messages.

    Args:
        payload: Parsed JSON body.
        provider: "evolution", "megazap" or "auto" (use detect_provider).

    Returns:
        Zero or more InboundMessage. Never raises for malformed input.
    """
    if provider == "auto":
        provider = detect_provider(payload)
    if provider == "megazap":
        return megazap_adapter.normalize(payload)
    return evolution_adapter.normalize(payload)
