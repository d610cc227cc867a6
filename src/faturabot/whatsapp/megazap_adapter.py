"""MegaZap adapter - validate and normalize webhook payloads.

MegaZap posts one flat object per message: `contact.key` is the phone,
`text` the message and `id` the message id.
"""

from typing import Any

from faturabot.domain.identifiers import normalize_whatsapp_phone, only_digits
from faturabot.infra.time import utc_now
from faturabot.observability.logging import get_logger
from faturabot.observability.redaction import safe_log_context

from .evolution_adapter import InvalidPayloadError
from .models import InboundMessage

logger = get_logger(__name__)


def _extensions(payload: dict[str, Any], contact: dict[str, Any]) -> dict[str, Any]:
    channel = payload.get("channel") if isinstance(payload.get("channel"), dict) else {}
    return {
        "contact_name": contact.get("name") or "",
        "contact_uid": contact.get("uid"),
        "contact_type": contact.get("type") or "",
        "contact_fields": contact.get("fields") or {},
        "channel_type": channel.get("type") or "",
        "channel_id": channel.get("id") or "",
        "client_id": payload.get("clienteId"),
        "origin": payload.get("origin") or "",
        "message_type": payload.get("type") or "",
    }


def extract_message(payload: dict[str, Any]) -> InboundMessage:
    """Validate a MegaZap body and build an InboundMessage.

    Raises:
        InvalidPayloadError: If contact.key, id or text are missing.
    """
    contact = payload.get("contact")
    if not isinstance(contact, dict):
        raise InvalidPayloadError("missing contact")

    phone = only_digits(str(contact.get("key") or ""))
    if not phone:
        raise InvalidPayloadError("missing contact.key")

    raw_id = payload.get("id")
    if raw_id is None or str(raw_id).strip() == "":
        raise InvalidPayloadError("missing id")

    text = payload.get("text")
    if not isinstance(text, str) or not text.strip():
        raise InvalidPayloadError("missing text")

    return InboundMessage(
        identity=normalize_whatsapp_phone(phone),
        text=text.strip(),
        message_id=str(raw_id),
        received_at=utc_now(),
        provider="megazap",
        extensions=_extensions(payload, contact),
    )


def normalize(payload: Any) -> list[InboundMessage]:
    """Normalize a MegaZap webhook body. Malformed bodies yield []."""
    if not isinstance(payload, dict):
        logger.warning("megazap body is not an object")
        return []
    try:
        return [extract_message(payload)]
    except InvalidPayloadError as e:
        logger.warning(
            "invalid megazap payload shape",
            extra={"extra_fields": safe_log_context(reason=str(e))},
        )
        return []
