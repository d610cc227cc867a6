"""Channel-independent reply produced by one conversation turn.

The engine fills a Reply with ordered blocks; a Channel decides how they
reach the customer (several sends, or one consolidated payload).
"""

from __future__ import annotations

from dataclasses import dataclass, field

from faturabot.domain.documents import DocumentFile
from faturabot.domain.intents import Handoff


@dataclass(frozen=True)
class TextBlock:
    text: str


@dataclass(frozen=True)
class DocumentBlock:
    """Binary attachment. `file.base64` may still carry a data-URI prefix."""

    file: DocumentFile


@dataclass(frozen=True)
class MenuBlock:
    """Main menu: header text plus (code, label, keyword) options."""

    text: str
    options: tuple[tuple[str, str, str], ...]


@dataclass(frozen=True)
class HandoffBlock:
    """Transfer to a human. `text` is the notice for text-only channels."""

    handoff: Handoff
    text: str


Block = TextBlock | DocumentBlock | MenuBlock | HandoffBlock


@dataclass
class Reply:
    """Ordered content for one inbound message."""

    identity: str
    message_id: str
    blocks: list[Block] = field(default_factory=list)

    def text(self, text: str) -> Reply:
        self.blocks.append(TextBlock(text))
        return self

    def document(self, file: DocumentFile) -> Reply:
        self.blocks.append(DocumentBlock(file))
        return self

    def menu(self, text: str, options: list[tuple[str, str, str]]) -> Reply:
        self.blocks.append(MenuBlock(text, tuple(options)))
        return self

    def handoff(self, handoff: Handoff, text: str) -> Reply:
        self.blocks.append(HandoffBlock(handoff, text))
        return self

    def texts(self) -> list[str]:
        """Every customer-visible text, in order (menus and handoffs included)."""
        out: list[str] = []
        for block in self.blocks:
            if isinstance(block, (TextBlock, MenuBlock, HandoffBlock)):
                out.append(block.text)
        return out

    def documents(self) -> list[DocumentFile]:
        return [b.file for b in self.blocks if isinstance(b, DocumentBlock)]

    def handoff_block(self) -> HandoffBlock | None:
        for block in self.blocks:
            if isinstance(block, HandoffBlock):
                return block
        return None

    def menu_block(self) -> MenuBlock | None:
        for block in self.blocks:
            if isinstance(block, MenuBlock):
                return block
        return None
