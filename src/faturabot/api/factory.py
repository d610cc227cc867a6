"""FastAPI application factory and runtime wiring."""

import time
from typing import Callable

from fastapi import FastAPI, Request, Response

from faturabot.domain.conversations import ConversationEngine
from faturabot.domain.sessions import InMemorySessionRepository
from faturabot.infra import db
from faturabot.infra.erp_client import ErpClient
from faturabot.infra.settings import Settings, load_settings
from faturabot.infra.transcripts import (
    InMemoryTranscriptRecorder,
    PostgresTranscriptRecorder,
    TranscriptRecorder,
)
from faturabot.observability.correlation import (
    CORRELATION_ID_HEADER,
    correlation_scope,
)
from faturabot.observability.logging import get_logger
from faturabot.observability.redaction import safe_log_context
from faturabot.whatsapp.channels import Channel

from .routers import public
from .routes import webhooks_whatsapp

logger = get_logger(__name__)


def build_recorder(
    settings: Settings,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> TranscriptRecorder:
    """PostgreSQL recorder when enabled and DATABASE_URL is set, in-memory otherwise."""
    if settings.persist_transcripts and db.is_configured():
        return PostgresTranscriptRecorder(
            attempts=settings.gateway_max_attempts,
            delay=settings.gateway_retry_delay,
            sleep=sleep,
        )
    return InMemoryTranscriptRecorder()


def build_engine(
    settings: Settings,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> ConversationEngine:
    """Wire the conversation engine from settings."""
    erp = ErpClient(
        settings.erp,
        attempts=settings.gateway_max_attempts,
        delay=settings.gateway_retry_delay,
        sleep=sleep,
    )
    return ConversationEngine(
        InMemorySessionRepository(timeout_minutes=settings.session_timeout_minutes),
        erp,
        build_recorder(settings, sleep=sleep),
        support_phone=settings.support_phone,
    )


def create_app(
    engine: ConversationEngine | None = None,
    channels: dict[str, Channel] | None = None,
    settings: Settings | None = None,
) -> FastAPI:
    """Create the FastAPI app.

    Args:
        engine: Conversation engine. Built from settings if None.
        channels: Channel per provider ("evolution", "megazap"). Missing
            entries are built from settings on first use.
        settings: Runtime settings. Read from the environment if None.

    Returns:
        Configured FastAPI application.
    """
    settings = settings or load_settings()

    app = FastAPI(
        title="Faturabot",
        docs_url=None,
        redoc_url=None,
    )
    app.state.settings = settings
    app.state.engine = engine or build_engine(settings)
    app.state.channels = dict(channels or {})

    logger.info(
        "app created",
        extra={
            "extra_fields": safe_log_context(
                message_format=settings.message_format,
                session_timeout_minutes=settings.session_timeout_minutes,
                erp_configured=bool(settings.erp.base_url),
                evolution_configured=settings.evolution.is_complete(),
            )
        },
    )

    # Correlation ID middleware
    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next) -> Response:
        with correlation_scope(request.headers.get(CORRELATION_ID_HEADER)) as cid:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = cid
            return response

    app.include_router(public.router)
    app.include_router(webhooks_whatsapp.router)

    return app
