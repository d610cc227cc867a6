"""Create conversation_transcripts.

Revision ID: 001_conversation_transcripts
Revises:
Create Date: 2026-10-17
"""
from __future__ import annotations

from alembic import op

revision = "001_conversation_transcripts"
down_revision = None
branch_labels = None
depends_on = None

UPGRADE_SQL = """
CREATE TABLE IF NOT EXISTS conversation_transcripts (
    id BIGSERIAL PRIMARY KEY,
    message_id TEXT NOT NULL,
    account_id TEXT,
    identifier TEXT,
    transcript JSONB NOT NULL DEFAULT '[]'::jsonb,
    correlation_id TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS idx_conversation_transcripts_message_id
    ON conversation_transcripts (message_id);

CREATE INDEX IF NOT EXISTS idx_conversation_transcripts_account_created
    ON conversation_transcripts (account_id, created_at);
"""


def upgrade() -> None:
    conn = op.get_bind()
    conn.exec_driver_sql(UPGRADE_SQL)


def downgrade() -> None:
    conn = op.get_bind()
    conn.exec_driver_sql("DROP TABLE IF EXISTS conversation_transcripts;")
