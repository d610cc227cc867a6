"""Evolution API adapter - validate and normalize webhook payloads."""

from typing import Any

from faturabot.domain.identifiers import normalize_whatsapp_phone, only_digits
from faturabot.infra.time import from_epoch, utc_now
from faturabot.observability.logging import get_logger
from faturabot.observability.redaction import safe_log_context

from .models import InboundMessage

logger = get_logger(__name__)

UPSERT_EVENT = "messages.upsert"
USER_JID_SUFFIX = "@s.whatsapp.net"
GROUP_JID_SUFFIX = "@g.us"
STATUS_BROADCAST_JID = "status@broadcast"


class InvalidPayloadError(Exception):
    """Raised when an Evolution message has invalid shape."""

    pass


class IgnoredMessage(Exception):
    """Raised for valid messages the bot must not answer (own, group, status)."""

    pass


def _message_items(payload: dict[str, Any]) -> list[Any]:
    """Split a webhook body into message objects.

    Evolution 2.3.6+ sends one message per `messages.upsert` event; older
    versions send `data` as an object or an array.
    """
    data = payload.get("data")
    if payload.get("event") == UPSERT_EVENT and isinstance(data, dict) and data.get("key"):
        return [data]
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        return [data]
    return []


def _extract_text(message: Any) -> str:
    """First non-empty text among plain text, extended text, button and list replies."""
    if not isinstance(message, dict):
        return ""
    extended = message.get("extendedTextMessage") or {}
    buttons = message.get("buttonsResponseMessage") or {}
    list_reply = message.get("listResponseMessage") or {}
    candidates = (
        message.get("conversation"),
        extended.get("text") if isinstance(extended, dict) else None,
        buttons.get("selectedButtonId") if isinstance(buttons, dict) else None,
        list_reply.get("title") if isinstance(list_reply, dict) else None,
    )
    for candidate in candidates:
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    return ""


def extract_message(item: Any) -> InboundMessage:
    """Validate one Evolution message object and build an InboundMessage.

    Args:
        item: One element of the webhook `data`.

    Returns:
        InboundMessage for the sender.

    Raises:
        InvalidPayloadError: If id, sender or text are missing.
        IgnoredMessage: For messages sent by the bot itself, groups and status.
    """
    if not isinstance(item, dict):
        raise InvalidPayloadError("message is not an object")

    key = item.get("key")
    if not isinstance(key, dict):
        raise InvalidPayloadError("missing key")

    remote_jid = key.get("remoteJid")
    if not remote_jid or not isinstance(remote_jid, str):
        raise InvalidPayloadError("missing remoteJid")

    if key.get("fromMe"):
        raise IgnoredMessage("fromMe")
    if remote_jid.endswith(GROUP_JID_SUFFIX) or remote_jid == STATUS_BROADCAST_JID:
        raise IgnoredMessage("group or broadcast")

    phone = only_digits(remote_jid.replace(USER_JID_SUFFIX, ""))
    if not phone:
        raise InvalidPayloadError("invalid remoteJid")

    message_id = key.get("id")
    if not message_id or not isinstance(message_id, str):
        raise InvalidPayloadError("missing or invalid message_id")

    text = _extract_text(item.get("message"))
    if not text:
        raise InvalidPayloadError("missing text")

    return InboundMessage(
        identity=normalize_whatsapp_phone(phone),
        text=text,
        message_id=message_id,
        received_at=from_epoch(item.get("messageTimestamp")) or utc_now(),
        provider="evolution",
        extensions={
            "push_name": item.get("pushName") or "",
            "message_type": item.get("messageType") or "",
            "instance": item.get("instance") or "",
        },
    )


def normalize(payload: Any) -> list[InboundMessage]:
    """Normalize an Evolution webhook body into zero or more messages.

    Malformed and ignored messages are dropped and logged; a body with
    nothing to process yields an empty list.
    """
    if not isinstance(payload, dict):
        logger.warning("evolution body is not an object")
        return []

    messages: list[InboundMessage] = []
    for index, item in enumerate(_message_items(payload)):
        try:
            messages.append(extract_message(item))
        except IgnoredMessage as e:
            logger.info(
                "evolution message ignored",
                extra={"extra_fields": safe_log_context(index=index, reason=str(e))},
            )
        except InvalidPayloadError as e:
            logger.warning(
                "invalid evolution message shape",
                extra={"extra_fields": safe_log_context(index=index, reason=str(e))},
            )
    return messages
