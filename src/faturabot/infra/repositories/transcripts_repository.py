"""Conversation transcripts repository - append-only audit, one row per turn.

Uses raw SQL with psycopg2 (no ORM).
"""

import json
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from faturabot.infra.db import fetchall


def insert_transcript(
    cur: PgCursor,
    *,
    message_id: str,
    account_id: str | None,
    identifier: str | None,
    entries: list[dict[str, Any]],
    correlation_id: str | None = None,
) -> int:
    """Append one transcript row.

    Args:
        cur: Database cursor (within transaction).
        message_id: Provider id of the processed message.
        account_id: ERP account id, when identified.
        identifier: CNPJ digits, when identified.
        entries: Ordered {"role", "at", "text" | "document"} entries.
        correlation_id: Optional correlation ID for tracing.

    Returns:
        The generated row ID.
    """
    cur.execute(
        """
        INSERT INTO conversation_transcripts (
            message_id, account_id, identifier, transcript, correlation_id
        )
        VALUES (%s, %s, %s, %s::jsonb, %s)
        RETURNING id
        """,
        (
            message_id,
            account_id,
            identifier,
            json.dumps(entries, ensure_ascii=False),
            correlation_id,
        ),
    )
    return cur.fetchone()[0]


def list_by_message_id(cur: PgCursor, message_id: str) -> list[dict[str, Any]]:
    """Transcript rows for a message id, oldest first."""
    rows = fetchall(
        cur,
        """
        SELECT id, message_id, account_id, identifier, transcript, created_at
        FROM conversation_transcripts
        WHERE message_id = %s
        ORDER BY id
        """,
        (message_id,),
    )
    return [
        {
            "id": row[0],
            "message_id": row[1],
            "account_id": row[2],
            "identifier": row[3],
            "transcript": row[4] if isinstance(row[4], list) else json.loads(row[4] or "[]"),
            "created_at": row[5],
        }
        for row in rows
    ]
