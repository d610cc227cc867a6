"""Intent resolution result models.

NO PII stored. Only the resolved action and its qualifiers.
"""

from dataclasses import dataclass
from enum import Enum

from faturabot.domain.documents import DocumentKind


class Intent(str, Enum):
    REQUEST_DOCUMENTS = "request_documents"
    CHANGE_IDENTIFIER = "change_identifier"
    REQUEST_HUMAN = "request_human"
    MENU_NOOP = "menu_noop"
    EXIT = "exit"
    IDENTIFIER_SUBMITTED = "identifier_submitted"
    UNRECOGNIZED = "unrecognized"


class Handoff(str, Enum):
    AGENT = "agent"
    SUPPORT = "support"


@dataclass(frozen=True)
class ResolvedIntent:
    """Canonical action for one inbound text.

    `document_kind` is set for REQUEST_DOCUMENTS, `handoff` for
    REQUEST_HUMAN and `identifier` (digits only) for IDENTIFIER_SUBMITTED.
    """

    intent: Intent
    document_kind: DocumentKind | None = None
    handoff: Handoff | None = None
    identifier: str | None = None

    def is_exit(self) -> bool:
        return self.intent is Intent.EXIT

    def wants_documents(self) -> bool:
        return self.intent is Intent.REQUEST_DOCUMENTS
