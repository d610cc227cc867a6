"""Deterministic intent resolution from customer messages.

NO LLM. Exact menu codes plus a data-driven alias table.
Security: NEVER log raw text (PII).
"""

import re
import unicodedata

from faturabot.domain.documents import DocumentKind
from faturabot.domain.identifiers import CNPJ_LENGTH, only_digits
from faturabot.domain.intents import Handoff, Intent, ResolvedIntent
from faturabot.domain.sessions import Stage

# Exit words win in every stage (exact match)
EXIT_WORDS: frozenset[str] = frozenset({"sair", "encerrar", "finalizar", "cancelar", "fim"})

_BILLS = ResolvedIntent(Intent.REQUEST_DOCUMENTS, document_kind=DocumentKind.BILL)
_INVOICES = ResolvedIntent(Intent.REQUEST_DOCUMENTS, document_kind=DocumentKind.INVOICE)
_AGENT = ResolvedIntent(Intent.REQUEST_HUMAN, handoff=Handoff.AGENT)
_SUPPORT = ResolvedIntent(Intent.REQUEST_HUMAN, handoff=Handoff.SUPPORT)
_CHANGE = ResolvedIntent(Intent.CHANGE_IDENTIFIER)
_MENU = ResolvedIntent(Intent.MENU_NOOP)
_EXIT = ResolvedIntent(Intent.EXIT)
_UNRECOGNIZED = ResolvedIntent(Intent.UNRECOGNIZED)

# Surface form -> canonical action (substring match, longest first).
# Common misspellings seen in production are listed explicitly.
DEFAULT_INTENT_ALIASES: dict[str, ResolvedIntent] = {
    # bills
    "boleto": _BILLS,
    "boletos": _BILLS,
    "bolto": _BILLS,
    "boleot": _BILLS,
    "contas": _BILLS,
    "aberto": _BILLS,
    "fatura": _BILLS,
    "segunda via": _BILLS,
    "2 via": _BILLS,
    "2a via": _BILLS,
    # invoices
    "nota fiscal": _INVOICES,
    "notafiscal": _INVOICES,
    "notas fiscais": _INVOICES,
    "nota": _INVOICES,
    "nfse": _INVOICES,
    "xml": _INVOICES,
    # billing agent
    "atendente": _AGENT,
    "atndente": _AGENT,
    "atndenti": _AGENT,
    "atndent": _AGENT,
    "atendimento": _AGENT,
    "atndimento": _AGENT,
    "atndiment": _AGENT,
    "financeiro": _AGENT,
    "financiro": _AGENT,
    "finaceiro": _AGENT,
    # support
    "humano": _SUPPORT,
    "suporte": _SUPPORT,
    "suport": _SUPPORT,
}

# Stage-scoped exact codes. INITIAL shares the main menu so a customer
# answering an old menu after a timeout is still understood.
_MAIN_MENU_CODES: dict[str, ResolvedIntent] = {
    "1": _BILLS,
    "2": _INVOICES,
    "3": _CHANGE,
    "4": _AGENT,
    "5": _SUPPORT,
    "menu": _MENU,
    "alterar": _CHANGE,
    "trocar": _CHANGE,
    "cnpj": _CHANGE,
}

STAGE_MENU_CODES: dict[Stage, dict[str, ResolvedIntent]] = {
    Stage.INITIAL: _MAIN_MENU_CODES,
    Stage.MENU: _MAIN_MENU_CODES,
    Stage.NO_PERMISSION: {
        "1": _AGENT,
        "sim": _AGENT,
        "s": _AGENT,
        "2": _EXIT,
        "nao": _EXIT,
        "n": _EXIT,
    },
    Stage.AWAITING_IDENTIFIER: {},
    Stage.AWAITING_NEW_IDENTIFIER: {"menu": _MENU},
    Stage.BLOCKED: {},
}

_AWAITING_STAGES = (Stage.AWAITING_IDENTIFIER, Stage.AWAITING_NEW_IDENTIFIER)

# Digits with the usual CNPJ punctuation only
_IDENTIFIER_SHAPE = re.compile(r"^[\d\s./\-]+$")


def _normalize(text: str) -> str:
    """Lowercase, trim, collapse spaces and drop accents and trailing punctuation."""
    lowered = text.lower().strip()
    decomposed = unicodedata.normalize("NFKD", lowered)
    no_accents = "".join(c for c in decomposed if not unicodedata.combining(c))
    collapsed = re.sub(r"\s+", " ", no_accents)
    return collapsed.strip(" .!?,;")


def extract_identifier(text: str) -> str | None:
    """Return the 14 digit identifier if text is just a (punctuated) CNPJ."""
    stripped = (text or "").strip()
    if not stripped or not _IDENTIFIER_SHAPE.match(stripped):
        return None
    digits = only_digits(stripped)
    return digits if len(digits) == CNPJ_LENGTH else None


def looks_like_identifier_attempt(text: str) -> bool:
    """True if text is mostly digits, even with the wrong length."""
    stripped = (text or "").strip()
    return bool(stripped) and bool(_IDENTIFIER_SHAPE.match(stripped)) and len(
        only_digits(stripped)
    ) >= 5


def _match_alias(normalized: str, aliases: dict[str, ResolvedIntent]) -> ResolvedIntent | None:
    # Sort by length descending to match longer aliases first
    for alias in sorted(aliases.keys(), key=len, reverse=True):
        if alias in normalized:
            return aliases[alias]
    return None


def resolve_intent(
    text: str,
    stage: Stage,
    *,
    aliases: dict[str, ResolvedIntent] | None = None,
) -> ResolvedIntent:
    """Resolve a customer message to a canonical action for the given stage.

    Order: exit words, then (awaiting stages only) a 14 digit identifier,
    then stage menu codes, then alias substrings.

    Args:
        text: Message text. NEVER logged.
        stage: Current session stage.
        aliases: Optional override for the alias table.

    Returns:
        ResolvedIntent; UNRECOGNIZED when nothing matches.
    """
    normalized = _normalize(text or "")
    if not normalized:
        return _UNRECOGNIZED

    if normalized in EXIT_WORDS:
        return _EXIT

    if stage in _AWAITING_STAGES:
        identifier = extract_identifier(text)
        if identifier:
            return ResolvedIntent(Intent.IDENTIFIER_SUBMITTED, identifier=identifier)

    codes = STAGE_MENU_CODES.get(stage, {})
    if normalized in codes:
        return codes[normalized]

    matched = _match_alias(normalized, aliases or DEFAULT_INTENT_ALIASES)
    if matched is not None:
        return matched

    return _UNRECOGNIZED
