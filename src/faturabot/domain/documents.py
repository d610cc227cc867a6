"""Billing documents: open bills (boletos, PDF) and service invoices (NFS-e, XML)."""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any


class DocumentKind(str, Enum):
    BILL = "bill"
    INVOICE = "invoice"


@dataclass(frozen=True)
class Document:
    """Open document listed by the ERP for one account."""

    id: str
    kind: DocumentKind
    account_id: str
    number: str = ""
    date: str = ""  # due date for bills, issue date for invoices (DD/MM/YYYY)
    amount: Decimal | None = None
    digitable_line: str = ""
    verification_code: str = ""
    access_key: str = ""


@dataclass(frozen=True)
class DocumentFile:
    """Binary rendition of a document, base64 encoded."""

    filename: str
    mimetype: str
    base64: str


_ERP_BR_DATE = re.compile(r"^(\d{2})-(\d{2})-(\d{4})")
_ISO_DATE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")


def format_erp_date(value: Any) -> str:
    """Display an ERP date as DD/MM/YYYY.

    Accepts "DD-MM-YYYY HH:MM:SS" (financial module) and "YYYY-MM-DD..."
    (fiscal module). Unknown formats are returned unchanged.
    """
    if value is None:
        return ""
    text = str(value).strip()
    match = _ERP_BR_DATE.match(text)
    if match:
        day, month, year = match.groups()
        return f"{day}/{month}/{year}"
    match = _ISO_DATE.match(text)
    if match:
        year, month, day = match.groups()
        return f"{day}/{month}/{year}"
    return text


def parse_amount(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    if isinstance(value, Decimal):
        return value
    text = str(value).strip()
    # "1.234,56" (pt-BR) -> "1234.56"
    if "," in text:
        text = text.replace(".", "").replace(",", ".")
    try:
        return Decimal(text)
    except InvalidOperation:
        return None


def format_brl(amount: Decimal | None) -> str:
    """Format as R$ 1.234,56."""
    if amount is None:
        return "-"
    quantized = amount.quantize(Decimal("0.01"))
    integer, _, cents = f"{quantized:,.2f}".partition(".")
    return f"R$ {integer.replace(',', '.')},{cents}"


def bill_from_erp(raw: dict[str, Any], account_id: str) -> Document | None:
    """Build a bill from an ERP installment record (/financeiro/parcelas)."""
    bill_id = raw.get("idConta")
    if bill_id is None or bill_id == "":
        return None
    return Document(
        id=str(bill_id),
        kind=DocumentKind.BILL,
        account_id=account_id,
        number=str(raw.get("numeroDocumento") or bill_id),
        date=format_erp_date(raw.get("dataVencimento")),
        amount=parse_amount(raw.get("valor")),
        digitable_line=str(raw.get("linhaDigitavelBoleto") or ""),
    )


def invoice_from_erp(raw: dict[str, Any], account_id: str) -> Document | None:
    """Build an invoice from an ERP service invoice record."""
    invoice_id = raw.get("id")
    if invoice_id is None or invoice_id == "":
        return None
    return Document(
        id=str(invoice_id),
        kind=DocumentKind.INVOICE,
        account_id=account_id,
        number=str(raw.get("numero") or invoice_id),
        date=format_erp_date(raw.get("dataEmissao")),
        amount=parse_amount(raw.get("valorLiquidoNfse") or raw.get("valor")),
        verification_code=str(raw.get("codigoVerificacao") or ""),
        access_key=str(raw.get("chaveAcesso") or ""),
    )
