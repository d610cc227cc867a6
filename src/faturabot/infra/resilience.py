"""Resilient call combinator for ERP, database and outbound WhatsApp calls.

Every external call goes through `resilient_call`, which retries transient
failures with linear backoff and folds the outcome into a GatewayResult.
Exceptions never cross this boundary; callers branch on `result.success`.
"""

from __future__ import annotations

import time
import urllib.error
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

import psycopg2
import requests

from faturabot.observability.logging import get_logger
from faturabot.observability.redaction import safe_log_context

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_ATTEMPTS = 3
DEFAULT_DELAY = 1.0

# PostgreSQL equivalents of "prepared statement needs to be re-prepared"
_REPREPARE_MARKERS = (
    "cached plan must not change result type",
    "needs to be re-prepared",
)


class GatewayError(Exception):
    """Raised inside gateway callables for upstream failures.

    Attributes:
        code: Short machine-readable error code (e.g. "http_502", "not_found").
        status_code: Upstream HTTP status, if any.
        retryable: Forces the transient classification regardless of status.
    """

    def __init__(
        self,
        code: str,
        *,
        status_code: int | None = None,
        retryable: bool = False,
        detail: str | None = None,
    ) -> None:
        super().__init__(detail or code)
        self.code = code
        self.status_code = status_code
        self.retryable = retryable
        self.detail = detail


@dataclass(frozen=True)
class GatewayResult:
    """Uniform envelope for every external call.

    `unavailable` is set when transient failures exhausted all attempts.
    """

    success: bool
    data: Any = None
    error: str | None = None
    unavailable: bool = False
    status_code: int | None = None

    @classmethod
    def ok(cls, data: Any) -> GatewayResult:
        return cls(success=True, data=data)

    @classmethod
    def fail(
        cls,
        error: str,
        *,
        unavailable: bool = False,
        status_code: int | None = None,
        data: Any = None,
    ) -> GatewayResult:
        return cls(
            success=False,
            data=data,
            error=error,
            unavailable=unavailable,
            status_code=status_code,
        )


def is_transient_http_error(exc: BaseException) -> bool:
    """Connection reset/refused, timeouts and upstream 5xx are transient."""
    if isinstance(exc, GatewayError):
        if exc.retryable:
            return True
        return exc.status_code is not None and exc.status_code >= 500
    if isinstance(exc, (requests.ConnectionError, requests.Timeout)):
        return True
    if isinstance(exc, requests.HTTPError) and exc.response is not None:
        return exc.response.status_code >= 500
    if isinstance(exc, urllib.error.HTTPError):
        return exc.code >= 500
    if isinstance(exc, urllib.error.URLError):
        return True
    return isinstance(exc, (ConnectionResetError, ConnectionRefusedError, TimeoutError))


def is_transient_db_error(exc: BaseException) -> bool:
    """Lost connections and stale prepared plans are transient."""
    if isinstance(exc, (psycopg2.OperationalError, psycopg2.InterfaceError)):
        return True
    if isinstance(exc, psycopg2.Error):
        message = str(exc).lower()
        return any(marker in message for marker in _REPREPARE_MARKERS)
    return isinstance(exc, (ConnectionResetError, TimeoutError))


def _error_code(exc: BaseException) -> str:
    if isinstance(exc, GatewayError):
        return exc.code
    return type(exc).__name__


def resilient_call(
    fn: Callable[[], T],
    *,
    operation: str,
    is_retryable: Callable[[BaseException], bool] = is_transient_http_error,
    attempts: int = DEFAULT_ATTEMPTS,
    delay: float = DEFAULT_DELAY,
    sleep: Callable[[float], None] = time.sleep,
    describe: Callable[[], str] | None = None,
) -> GatewayResult:
    """Run fn with retry and linear backoff, never raising.

    Args:
        fn: Zero-argument callable performing the external call.
        operation: Short name used in logs (e.g. "erp.lookup_by_phone").
        is_retryable: Predicate deciding whether an exception is transient.
        attempts: Maximum number of attempts (first try included).
        delay: Base delay; after attempt N the wait is N * delay seconds.
        sleep: Sleep function (injectable for tests).
        describe: Renders the outbound request for the final failure log.
            Its output is redacted before logging.

    Returns:
        GatewayResult.ok(data) on success; GatewayResult.fail(...) otherwise.
    """
    attempts = max(1, attempts)
    last_exc: BaseException | None = None

    for attempt in range(1, attempts + 1):
        try:
            data = fn()
            if attempt > 1:
                logger.info(
                    "gateway call recovered",
                    extra={
                        "extra_fields": safe_log_context(
                            operation=operation, attempt=attempt
                        )
                    },
                )
            return GatewayResult.ok(data)
        except Exception as e:
            last_exc = e
            transient = is_retryable(e)

            if transient and attempt < attempts:
                logger.warning(
                    "gateway call failed, retrying",
                    extra={
                        "extra_fields": safe_log_context(
                            operation=operation,
                            attempt=attempt,
                            max_attempts=attempts,
                            error_type=type(e).__name__,
                        )
                    },
                )
                sleep(attempt * delay)
                continue

            logger.error(
                "gateway call failed",
                extra={
                    "extra_fields": safe_log_context(
                        operation=operation,
                        attempt=attempt,
                        max_attempts=attempts,
                        error_type=type(e).__name__,
                        error=str(e),
                        request=describe() if describe else None,
                    )
                },
            )
            return GatewayResult.fail(
                _error_code(e),
                unavailable=transient,
                status_code=getattr(e, "status_code", None),
            )

    # attempts >= 1, so the loop always returns; kept for type checkers
    return GatewayResult.fail(
        _error_code(last_exc) if last_exc else "unknown", unavailable=True
    )
