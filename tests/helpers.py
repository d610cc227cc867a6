"""Shared test helpers for faturabot tests.

Plain functions and doubles importable from any test module. These are NOT
fixtures.
"""

from __future__ import annotations

import base64
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from faturabot.domain.accounts import Account, Contact
from faturabot.domain.documents import Document, DocumentFile, DocumentKind
from faturabot.infra.resilience import GatewayResult

# Synthetic data only
CALLER = "5511987654321"
CALLER_ERP = "11987654321"
OTHER_PHONE = "11912345678"

CNPJ_A = "11222333000181"
CNPJ_B = "11444777000161"
CNPJ_C = "12345678000195"
CNPJ_INVALID = "11222333000182"

PDF_BYTES = b"%PDF-1.4 synthetic"
PDF_BASE64 = base64.b64encode(PDF_BYTES).decode("ascii")


class LogRecorder:
    """Simple recorder to capture log calls deterministically."""

    def __init__(self):
        self.calls: list[tuple[str, tuple, dict]] = []

    def _record(self, level: str, *args, **kwargs):
        self.calls.append((level, args, kwargs))

    def info(self, *args, **kwargs):
        self._record("info", *args, **kwargs)

    def warning(self, *args, **kwargs):
        self._record("warning", *args, **kwargs)

    def error(self, *args, **kwargs):
        self._record("error", *args, **kwargs)

    def exception(self, *args, **kwargs):
        self._record("exception", *args, **kwargs)

    def debug(self, *args, **kwargs):
        self._record("debug", *args, **kwargs)

    def messages(self, level: str | None = None) -> list[str]:
        return [args[0] for lvl, args, _ in self.calls if level is None or lvl == level]

    def get_all_logged_content(self) -> str:
        """Concatenate all args and kwargs from all calls into one string."""
        parts = []
        for _, args, kwargs in self.calls:
            parts.append(str(args))
            parts.append(str(kwargs))
        return " ".join(parts)

    def extra_fields(self, message: str) -> dict:
        for _, args, kwargs in self.calls:
            if args and args[0] == message:
                return kwargs.get("extra", {}).get("extra_fields", {})
        raise AssertionError(f"no log call {message!r}")


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: float) -> None:
        self.now = self.now + timedelta(minutes=minutes)


def make_contact(
    name: str = "Maria",
    phone: str = CALLER_ERP,
    *,
    mobile: str = "",
    authorized: bool = True,
) -> Contact:
    return Contact(name=name, phone=phone, mobile=mobile, billing_authorized=authorized)


def make_account(
    account_id: str = "100",
    identifier: str = CNPJ_A,
    *,
    name: str = "Empresa Exemplo Ltda",
    blocked: bool = False,
    contacts: tuple[Contact, ...] | None = None,
) -> Account:
    if contacts is None:
        contacts = (make_contact(),)
    return Account(
        id=account_id,
        identifier=identifier,
        name=name,
        blocked=blocked,
        contacts=contacts,
    )


def make_bill(bill_id: str, account_id: str = "100", *, amount: str = "150.00") -> Document:
    return Document(
        id=bill_id,
        kind=DocumentKind.BILL,
        account_id=account_id,
        number=f"DOC-{bill_id}",
        date="10/03/2026",
        amount=Decimal(amount),
        digitable_line="23790.00000 00000.000000 00000.000000 1 00000000015000",
    )


def make_invoice(invoice_id: str, account_id: str = "100") -> Document:
    return Document(
        id=invoice_id,
        kind=DocumentKind.INVOICE,
        account_id=account_id,
        number=f"NF-{invoice_id}",
        date="01/03/2026",
        amount=Decimal("980.50"),
        verification_code="ABC123",
    )


def pdf_file(bill_id: str) -> DocumentFile:
    return DocumentFile(
        filename=f"boleto_{bill_id}.pdf",
        mimetype="application/pdf",
        base64=PDF_BASE64,
    )


class FakeErp:
    """In-memory ERP gateway double; records every call.

    `unavailable` holds operation names that fail as exhausted transient
    errors; `failing_files` holds document ids whose binary cannot be built.
    """

    def __init__(
        self,
        *,
        by_phone: dict[str, list[Account]] | None = None,
        by_identifier: dict[str, Account] | None = None,
        bills: dict[str, list[Document]] | None = None,
        invoices: dict[str, list[Document]] | None = None,
    ):
        self.by_phone = by_phone or {}
        self.by_identifier = by_identifier or {}
        self.bills = bills or {}
        self.invoices = invoices or {}
        self.unavailable: set[str] = set()
        self.failing_files: set[str] = set()
        self.calls: list[tuple[str, str]] = []

    def _call(self, operation: str, arg: str) -> GatewayResult | None:
        self.calls.append((operation, arg))
        if operation in self.unavailable:
            return GatewayResult.fail("ConnectionError", unavailable=True)
        return None

    def operations(self) -> list[str]:
        return [op for op, _ in self.calls]

    def lookup_by_phone(self, phone: str) -> GatewayResult:
        return self._call("lookup_by_phone", phone) or GatewayResult.ok(
            list(self.by_phone.get(phone, []))
        )

    def lookup_by_identifier(self, identifier: str) -> GatewayResult:
        failed = self._call("lookup_by_identifier", identifier)
        if failed:
            return failed
        account = self.by_identifier.get(identifier)
        return GatewayResult.ok([account] if account else [])

    def list_open_bills(self, account_id: str) -> GatewayResult:
        return self._call("list_open_bills", account_id) or GatewayResult.ok(
            list(self.bills.get(account_id, []))
        )

    def fetch_bill_pdf(self, bill_id: str) -> GatewayResult:
        failed = self._call("fetch_bill_pdf", bill_id)
        if failed:
            return failed
        if bill_id in self.failing_files:
            return GatewayResult.fail("not_pdf")
        return GatewayResult.ok(pdf_file(bill_id))

    def list_invoices(self, account_id: str) -> GatewayResult:
        return self._call("list_invoices", account_id) or GatewayResult.ok(
            list(self.invoices.get(account_id, []))
        )

    def fetch_invoice_xml(self, invoice_id: str) -> GatewayResult:
        failed = self._call("fetch_invoice_xml", invoice_id)
        if failed:
            return failed
        if invoice_id in self.failing_files:
            return GatewayResult.fail("not_xml")
        xml = f"<Nfse><Numero>{invoice_id}</Numero></Nfse>".encode()
        return GatewayResult.ok(
            DocumentFile(
                filename=f"{invoice_id}-ABC123.xml",
                mimetype="application/xml",
                base64=base64.b64encode(xml).decode("ascii"),
            )
        )


def evolution_payload(
    message_id: str = "MSG001",
    phone: str = CALLER,
    text: str = "boleto",
    **key_extra,
) -> dict:
    """Evolution messages.upsert webhook body."""
    return {
        "event": "messages.upsert",
        "instance": "faturas",
        "data": {
            "key": {
                "id": message_id,
                "remoteJid": f"{phone}@s.whatsapp.net",
                "fromMe": False,
                **key_extra,
            },
            "pushName": "Maria",
            "messageType": "conversation",
            "messageTimestamp": 1772442000,
            "message": {"conversation": text},
        },
    }


def megazap_payload(
    message_id: str = "MZ001",
    phone: str = CALLER,
    text: str = "boleto",
) -> dict:
    """MegaZap webhook body."""
    return {
        "id": message_id,
        "type": "TEXT",
        "text": text,
        "origin": "CONTACT",
        "clienteId": 77,
        "contact": {
            "key": phone,
            "name": "Maria",
            "uid": 123,
            "type": "PERSON",
            "fields": {},
        },
        "channel": {"id": "ch-1", "type": "WHATSAPP"},
    }
