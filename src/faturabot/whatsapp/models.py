"""WhatsApp message models."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

Provider = Literal["evolution", "megazap"]


@dataclass(frozen=True)
class InboundMessage:
    """Canonical inbound message, identical in shape for every provider.

    ATENÇÃO PII:
    - `identity` (phone digits) and `text` are PII
    - Use only in memory; NEVER log them (log hashes and lengths)

    Attributes:
        identity: Phone in WhatsApp format (55 + DDD + number), digits only.
        text: First non-empty text among the supported message kinds, trimmed.
        message_id: Provider message id.
        received_at: Provider timestamp, or processing time when absent.
        provider: Provider the payload came from.
        extensions: Provider-specific fields (contact name, channel, ...).
    """

    identity: str
    text: str
    message_id: str
    received_at: datetime
    provider: Provider
    extensions: dict[str, Any] = field(default_factory=dict, compare=False)
