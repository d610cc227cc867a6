"""Transcript recorder used by the conversation engine.

Writes go through `resilient_call` with the database retry predicate.
A failed write is logged and never changes the reply sent to the customer.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from typing import Any, Callable, Protocol

from faturabot.infra import db
from faturabot.infra.repositories import transcripts_repository
from faturabot.infra.resilience import (
    DEFAULT_ATTEMPTS,
    DEFAULT_DELAY,
    GatewayResult,
    is_transient_db_error,
    resilient_call,
)
from faturabot.observability.correlation import get_correlation_id

DEFAULT_MAX_ROWS = 1000


class TranscriptRecorder(Protocol):
    def record(
        self,
        *,
        message_id: str,
        account_id: str | None,
        identifier: str | None,
        entries: list[dict[str, Any]],
    ) -> GatewayResult: ...

    def get_by_message_id(self, message_id: str) -> GatewayResult: ...


class PostgresTranscriptRecorder:
    """Persists transcripts in PostgreSQL."""

    def __init__(
        self,
        *,
        attempts: int = DEFAULT_ATTEMPTS,
        delay: float = DEFAULT_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._attempts = attempts
        self._delay = delay
        self._sleep = sleep

    def _call(self, operation: str, fn: Callable[[], Any]) -> GatewayResult:
        return resilient_call(
            fn,
            operation=operation,
            is_retryable=is_transient_db_error,
            attempts=self._attempts,
            delay=self._delay,
            sleep=self._sleep,
        )

    def record(
        self,
        *,
        message_id: str,
        account_id: str | None,
        identifier: str | None,
        entries: list[dict[str, Any]],
    ) -> GatewayResult:
        def write() -> int:
            with db.txn() as cur:
                return transcripts_repository.insert_transcript(
                    cur,
                    message_id=message_id,
                    account_id=account_id,
                    identifier=identifier,
                    entries=entries,
                    correlation_id=get_correlation_id() or None,
                )

        return self._call("db.record_transcript", write)

    def get_by_message_id(self, message_id: str) -> GatewayResult:
        def read() -> list[dict[str, Any]]:
            with db.txn() as cur:
                return transcripts_repository.list_by_message_id(cur, message_id)

        return self._call("db.get_transcript", read)


class InMemoryTranscriptRecorder:
    """Keeps the most recent transcripts in memory (no database configured, and tests).

    Args:
        max_rows: Oldest rows are dropped beyond this count.
    """

    def __init__(self, max_rows: int = DEFAULT_MAX_ROWS) -> None:
        self.rows: deque[dict[str, Any]] = deque(maxlen=max_rows)
        self._next_id = 1
        self._lock = threading.Lock()

    def record(
        self,
        *,
        message_id: str,
        account_id: str | None,
        identifier: str | None,
        entries: list[dict[str, Any]],
    ) -> GatewayResult:
        with self._lock:
            row = {
                "id": self._next_id,
                "message_id": message_id,
                "account_id": account_id,
                "identifier": identifier,
                "transcript": list(entries),
            }
            self._next_id += 1
            self.rows.append(row)
        return GatewayResult.ok(row["id"])

    def get_by_message_id(self, message_id: str) -> GatewayResult:
        with self._lock:
            rows = [r for r in self.rows if r["message_id"] == message_id]
        return GatewayResult.ok(rows)
