"""Outbound channels: how a Reply reaches the customer.

- SequentialChannel (Evolution): one send per block, paced, partial
  delivery accepted.
- ConsolidatedChannel (MegaZap): one payload per inbound message, returned
  as the webhook response.

The channel follows the provider of the inbound payload.
"""

from __future__ import annotations

import re
import time
from typing import Any, Callable, Protocol

from faturabot.domain.intents import Handoff
from faturabot.domain.replies import (
    DocumentBlock,
    MenuBlock,
    Reply,
    TextBlock,
)
from faturabot.infra.hashing import hash_identifier
from faturabot.infra.settings import MegazapConfig, Settings
from faturabot.observability.logging import get_logger
from faturabot.observability.redaction import safe_log_context

from .evolution_sender import EvolutionSender
from .megazap_payloads import (
    Attachment,
    DirectToMenuPayload,
    InformationPayload,
    MenuCallback,
    MenuCallbackContact,
    MenuCallbackData,
    MenuItem,
    MenuPayload,
)

logger = get_logger(__name__)

_DATA_URI_PREFIX = re.compile(r"data:[^;,]*;base64,", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")


def clean_base64(value: str) -> str:
    """Strip data-URI prefixes and line breaks from base64 content."""
    without_prefix = _DATA_URI_PREFIX.sub("", value or "")
    return _WHITESPACE.sub("", without_prefix)


def menu_as_text(block: MenuBlock) -> str:
    lines = [block.text, ""]
    lines.extend(f"{code} - {label}" for code, label, _ in block.options)
    return "\n".join(lines)


class Channel(Protocol):
    """Delivers a Reply. `consolidated` channels return the webhook payload."""

    consolidated: bool

    def deliver(self, reply: Reply) -> dict[str, Any]: ...


class SequentialChannel:
    """Sends each block as its own Evolution message.

    A failed send is logged and does not stop the remaining blocks; earlier
    sends are not rolled back.

    Args:
        sender: Evolution sender.
        pacing_seconds: Pause between a text notice and the next attachment.
        document_pacing_seconds: Pause after each attachment.
        sleep: Sleep function (injectable for tests).
    """

    consolidated = False

    def __init__(
        self,
        sender: EvolutionSender,
        *,
        pacing_seconds: float = 1.0,
        document_pacing_seconds: float = 3.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._sender = sender
        self._pacing = pacing_seconds
        self._document_pacing = document_pacing_seconds
        self._sleep = sleep

    def deliver(self, reply: Reply) -> dict[str, Any]:
        sent = 0
        failed = 0
        previous_was_text = False

        for index, block in enumerate(reply.blocks):
            if isinstance(block, DocumentBlock):
                if previous_was_text and self._pacing:
                    self._sleep(self._pacing)
                result = self._sender.send_document(
                    reply.identity,
                    clean_base64(block.file.base64),
                    block.file.filename,
                    block.file.mimetype,
                )
                if self._document_pacing:
                    self._sleep(self._document_pacing)
                previous_was_text = False
            else:
                text = menu_as_text(block) if isinstance(block, MenuBlock) else block.text
                result = self._sender.send_text(reply.identity, text)
                previous_was_text = True

            if result.success:
                sent += 1
            else:
                failed += 1
                logger.error(
                    "outbound block failed, continuing",
                    extra={
                        "extra_fields": safe_log_context(
                            to_hash=hash_identifier(reply.identity),
                            block_index=index,
                            block_type=type(block).__name__,
                            error=result.error,
                        )
                    },
                )

        if failed:
            logger.warning(
                "partial delivery",
                extra={"extra_fields": safe_log_context(sent=sent, failed=failed)},
            )
        return {"sent": sent, "failed": failed}


class ConsolidatedChannel:
    """Builds the single MegaZap payload for a Reply.

    Text blocks are joined in order; documents become attachments in order.
    With no attachments the payload is text-only (no attachments key).

    Args:
        config: MegaZap menu UUID (human handoff) and menu callback endpoint.
    """

    consolidated = True

    def __init__(self, config: MegazapConfig) -> None:
        self._config = config

    def _menu_payload(self, reply: Reply, menu: MenuBlock) -> MenuPayload:
        texts = [b.text for b in reply.blocks if isinstance(b, TextBlock)]
        texts.append(menu.text)
        items = [
            MenuItem(
                number=int(code),
                text=label,
                callback=MenuCallback(
                    endpoint=self._config.callback_url,
                    data=MenuCallbackData(
                        text=keyword,
                        contact=MenuCallbackContact(key=reply.identity),
                        id=reply.message_id,
                    ),
                ),
            )
            for code, label, keyword in menu.options
        ]
        return MenuPayload(text="\n\n".join(texts), items=items)

    def _information_payload(self, reply: Reply) -> InformationPayload:
        texts: list[str] = []
        attachments: list[Attachment] = []
        for block in reply.blocks:
            if isinstance(block, DocumentBlock):
                attachments.append(
                    Attachment(name=block.file.filename, base64=clean_base64(block.file.base64))
                )
            elif isinstance(block, MenuBlock):
                texts.append(menu_as_text(block))
            else:
                texts.append(block.text)
        return InformationPayload(
            text="\n\n".join(texts),
            attachments=attachments or None,
        )

    def render(self, reply: Reply) -> InformationPayload | MenuPayload | DirectToMenuPayload:
        handoff = reply.handoff_block()
        if (
            handoff is not None
            and handoff.handoff is Handoff.AGENT
            and self._config.menu_uuid
        ):
            # DIRECT_TO_MENU has no text field: earlier text blocks of this
            # reply (welcome included) are not sent, the attendant menu greets.
            return DirectToMenuPayload(menuUUID=self._config.menu_uuid)

        menu = reply.menu_block()
        if menu is not None and not reply.documents():
            return self._menu_payload(reply, menu)

        return self._information_payload(reply)

    def deliver(self, reply: Reply) -> dict[str, Any]:
        payload = self.render(reply)
        logger.info(
            "consolidated reply built",
            extra={
                "extra_fields": safe_log_context(
                    to_hash=hash_identifier(reply.identity),
                    type=payload.type,
                    attachments=len(reply.documents()),
                )
            },
        )
        return payload.model_dump(exclude_none=True)


def build_channel(
    settings: Settings,
    provider: str,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> Channel:
    """Build the channel for a provider ("megazap" is consolidated, anything else sequential)."""
    if provider == "megazap":
        return ConsolidatedChannel(settings.megazap)
    return SequentialChannel(
        EvolutionSender(settings.evolution, sleep=sleep),
        pacing_seconds=settings.send_pacing_seconds,
        document_pacing_seconds=settings.document_pacing_seconds,
        sleep=sleep,
    )
