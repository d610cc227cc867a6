"""Outbound WhatsApp messaging via Evolution API.

Security: NEVER log the recipient or text. Only log hashes and lengths.
"""

import json
import time
import urllib.request
from typing import Any, Callable

from faturabot.infra.hashing import hash_identifier
from faturabot.infra.resilience import GatewayResult, is_transient_http_error, resilient_call
from faturabot.infra.settings import EvolutionConfig
from faturabot.observability.correlation import get_correlation_id
from faturabot.observability.logging import get_logger
from faturabot.observability.redaction import safe_log_context

logger = get_logger(__name__)

# Timeout for HTTP requests (seconds); documents can be a few MB
HTTP_TIMEOUT = 30

# Retry config (sends are not idempotent, keep attempts low)
MAX_ATTEMPTS = 2
RETRY_DELAY = 0.2


def _do_request(url: str, data: bytes, headers: dict[str, str]) -> dict[str, Any]:
    """Execute HTTP POST request. Raises on error."""
    req = urllib.request.Request(url, data=data, headers=headers, method="POST")
    with urllib.request.urlopen(req, timeout=HTTP_TIMEOUT) as resp:
        body = resp.read().decode()
        return json.loads(body) if body else {}


class EvolutionSender:
    """Sends text and documents through one Evolution instance.

    Args:
        config: Evolution base URL, instance and API key.
        sleep: Sleep function used between retries (injectable for tests).
    """

    def __init__(
        self,
        config: EvolutionConfig,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._config = config
        self._sleep = sleep

    def _post(self, path: str, payload: dict[str, Any], log_ctx: dict[str, Any]) -> GatewayResult:
        if not self._config.is_complete():
            logger.error(
                "evolution not configured",
                extra={"extra_fields": safe_log_context(**log_ctx)},
            )
            return GatewayResult.fail("evolution_not_configured")

        url = f"{self._config.base_url}{path}/{self._config.instance}"
        headers = {
            "Content-Type": "application/json",
            "apikey": self._config.api_key,
        }
        data = json.dumps(payload).encode("utf-8")

        logger.info("sending outbound message", extra={"extra_fields": safe_log_context(**log_ctx)})
        result = resilient_call(
            lambda: _do_request(url, data, headers),
            operation=f"evolution.{path.rsplit('/', 1)[-1]}",
            is_retryable=is_transient_http_error,
            attempts=MAX_ATTEMPTS,
            delay=RETRY_DELAY,
            sleep=self._sleep,
            describe=lambda: f"[POST] {self._config.base_url}{path}/{self._config.instance}",
        )
        if result.success:
            logger.info("outbound message sent", extra={"extra_fields": safe_log_context(**log_ctx)})
        return result

    def send_text(self, to: str, text: str) -> GatewayResult:
        """Send a text message.

        Args:
            to: Recipient phone (digits). NEVER logged.
            text: Message text. NEVER logged.
        """
        return self._post(
            "/message/sendText",
            {"number": to, "text": text},
            {
                "correlationId": get_correlation_id(),
                "to_hash": hash_identifier(to),
                "kind": "text",
                "text_len": len(text),
            },
        )

    def send_document(
        self,
        to: str,
        base64_content: str,
        filename: str,
        mimetype: str,
        caption: str = "",
    ) -> GatewayResult:
        """Send a document (base64 without data-URI prefix)."""
        return self._post(
            "/message/sendMedia",
            {
                "number": to,
                "mediatype": "document",
                "mimetype": mimetype,
                "media": base64_content,
                "fileName": filename,
                "caption": caption,
            },
            {
                "correlationId": get_correlation_id(),
                "to_hash": hash_identifier(to),
                "kind": "document",
                "size": len(base64_content),
            },
        )
