"""WhatsApp webhook route - Evolution and MegaZap integration.

Security:
- Phone and text exist only in memory during processing
- Logs contain NO PII (hashes, ids and counts only)

The route always answers 200 so providers never redeliver: malformed
bodies and messages are dropped and logged.
"""

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from faturabot.domain.conversations import ConversationEngine
from faturabot.infra.hashing import hash_identifier
from faturabot.observability.correlation import get_correlation_id
from faturabot.observability.logging import get_logger
from faturabot.observability.redaction import safe_log_context
from faturabot.whatsapp.channels import Channel, build_channel
from faturabot.whatsapp.models import InboundMessage
from faturabot.whatsapp.normalizer import detect_provider, normalize

router = APIRouter(prefix="/webhooks/whatsapp", tags=["webhooks"])

logger = get_logger(__name__)

IGNORED = {"status": "ignored"}


def _get_channel(request: Request, provider: str) -> Channel:
    """Channel for the provider, built once per app (allows test injection)."""
    channels: dict[str, Channel] = request.app.state.channels
    if provider not in channels:
        channels[provider] = build_channel(request.app.state.settings, provider)
    return channels[provider]


def _process(
    engine: ConversationEngine,
    channel: Channel,
    messages: list[InboundMessage],
) -> list[dict[str, Any]]:
    """Run each message through the engine and the channel, in order.

    Delivery happens under the identity lock, so a later message from the
    same phone is answered only after this reply was fully dispatched.
    """
    delivered: list[dict[str, Any]] = []
    for message in messages:
        try:
            delivered.append(engine.handle_and_deliver(message, channel))
        except Exception:
            logger.exception(
                "reply delivery failed",
                extra={
                    "extra_fields": safe_log_context(
                        correlationId=get_correlation_id(),
                        to_hash=hash_identifier(message.identity),
                        message_id=message.message_id,
                    )
                },
            )
    return delivered


@router.post("")
async def whatsapp_webhook(request: Request) -> JSONResponse:
    """Receive a provider webhook and answer it.

    Returns:
        Evolution: {"status": "ok", "processed": n}.
        MegaZap: the consolidated payload (a list when several messages
        were processed), or {"status": "ignored"} when nothing was.
    """
    correlation_id = get_correlation_id()

    try:
        payload: Any = await request.json()
    except Exception:
        logger.warning(
            "invalid json body",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return JSONResponse(IGNORED)

    provider = request.app.state.settings.message_format
    if provider == "auto":
        provider = detect_provider(payload)

    messages = normalize(payload, provider)

    logger.info(
        "whatsapp webhook received",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id,
                provider=provider,
                messages=len(messages),
            )
        },
    )

    if not messages:
        if provider == "megazap":
            return JSONResponse(IGNORED)
        return JSONResponse({"status": "ok", "processed": 0})

    channel = _get_channel(request, provider)
    engine: ConversationEngine = request.app.state.engine
    delivered = await run_in_threadpool(_process, engine, channel, messages)

    if not channel.consolidated:
        return JSONResponse({"status": "ok", "processed": len(messages)})
    if not delivered:
        return JSONResponse(IGNORED)
    if len(delivered) == 1:
        return JSONResponse(delivered[0])
    return JSONResponse(delivered)
