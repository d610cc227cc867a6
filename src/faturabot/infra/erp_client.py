"""ERP REST gateway: partner lookups, open bills and service invoices.

Every public method goes through `resilient_call` and returns a
GatewayResult; nothing here raises to the caller.

Security: NEVER log phone, CNPJ or the API token. Only hashes and ids.
"""

from __future__ import annotations

import base64
import json
import re
import time
from typing import Any, Callable

import requests

from faturabot.domain.accounts import accounts_from_erp
from faturabot.domain.documents import (
    DocumentFile,
    bill_from_erp,
    format_erp_date,
    invoice_from_erp,
)
from faturabot.domain.identifiers import only_digits, phone_for_erp
from faturabot.infra.hashing import hash_identifier
from faturabot.infra.resilience import (
    DEFAULT_ATTEMPTS,
    DEFAULT_DELAY,
    GatewayError,
    GatewayResult,
    is_transient_http_error,
    resilient_call,
)
from faturabot.infra.settings import ErpConfig
from faturabot.observability.logging import get_logger
from faturabot.observability.redaction import safe_log_context

logger = get_logger(__name__)

PATH_PARTNERS_BY_PHONE = "/cadastro/parceiro/clientesPorTelefone"
PATH_PARTNERS = "/cadastro/parceiro/clientes"
PATH_INSTALLMENTS = "/financeiro/parcelas"
PATH_BILL_PDF = "/financeiro/boletosPDF"
PATH_SERVICE_INVOICES = "/comercial/notaFiscalServico"
PATH_SERVICE_INVOICE_XML = "/comercial/notaFiscalServico/XML"

OPEN_BILLS_LIMIT = 10

_PDF_MAGIC = b"%PDF"
_ACCESS_KEY = re.compile(r"Chave\s+de\s+acesso[^:]*:\s*(\d{44})", re.IGNORECASE)
_ANY_44_DIGITS = re.compile(r"(\d{44})")


def _xml_tag(xml: str, tag: str) -> str:
    match = re.search(rf"<{tag}>([^<]+)</{tag}>", xml, re.IGNORECASE)
    return match.group(1).strip() if match else ""


def parse_invoice_xml(xml: str) -> dict[str, str]:
    """Extract display fields from an NFS-e XML document."""
    other_info = _xml_tag(xml, "OutrasInformacoes")
    access_key = ""
    if other_info:
        match = _ACCESS_KEY.search(other_info) or _ANY_44_DIGITS.search(other_info)
        access_key = match.group(1) if match else ""
    return {
        "numero": _xml_tag(xml, "Numero"),
        "codigoVerificacao": _xml_tag(xml, "CodigoVerificacao"),
        "valorLiquidoNfse": _xml_tag(xml, "ValorLiquidoNfse"),
        "dataEmissao": format_erp_date(_xml_tag(xml, "DataEmissao")),
        "chaveAcesso": access_key,
    }


def _records(payload: Any) -> list[dict[str, Any]]:
    """Unwrap {"data": [...]} list responses."""
    records = payload.get("data", []) if isinstance(payload, dict) else payload
    if isinstance(records, dict):
        records = [records]
    if not isinstance(records, list):
        return []
    return [r for r in records if isinstance(r, dict)]


def _error_detail(body: bytes) -> str | None:
    """Best-effort extraction of an ERP JSON error message."""
    try:
        parsed = json.loads(body.decode("utf-8"))
    except (ValueError, UnicodeDecodeError):
        return None
    if isinstance(parsed, dict):
        for key in ("message", "mensagem", "error", "erro"):
            if parsed.get(key):
                return str(parsed[key])
    return None


class ErpClient:
    """HTTP client for the ERP REST API.

    Args:
        config: Base URL, token and timeout.
        attempts: Attempts per call (first try included).
        delay: Base backoff delay in seconds (attempt N waits N * delay).
        sleep: Sleep function (injectable for tests).
        session: Optional requests.Session (injectable for tests).
    """

    def __init__(
        self,
        config: ErpConfig,
        *,
        attempts: int = DEFAULT_ATTEMPTS,
        delay: float = DEFAULT_DELAY,
        sleep: Callable[[float], None] = time.sleep,
        session: requests.Session | None = None,
    ) -> None:
        self._config = config
        self._attempts = attempts
        self._delay = delay
        self._sleep = sleep
        self._session = session or requests.Session()

    def _url(self, path: str) -> str:
        if not self._config.base_url:
            raise GatewayError("erp_not_configured")
        return f"{self._config.base_url}{path}"

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._config.api_token:
            headers["Authorization"] = f"Bearer {self._config.api_token}"
        return headers

    def _describe(self, method: str, path: str, params: dict[str, Any]) -> Callable[[], str]:
        def render() -> str:
            query = "&".join(f"{k}={v}" for k, v in params.items())
            url = f"{self._config.base_url}{path}"
            return f"[{method}] {url}?{query}" if query else f"[{method}] {url}"

        return render

    def _get(self, path: str, params: dict[str, Any]) -> requests.Response:
        response = self._session.get(
            self._url(path),
            params=params,
            headers=self._headers(),
            timeout=self._config.timeout_seconds,
        )
        if response.status_code >= 400:
            raise GatewayError(
                f"http_{response.status_code}",
                status_code=response.status_code,
                detail=_error_detail(response.content),
            )
        return response

    def _get_json(self, path: str, params: dict[str, Any]) -> Any:
        response = self._get(path, params)
        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise GatewayError("invalid_json", status_code=response.status_code) from e

    def _call(
        self,
        operation: str,
        fn: Callable[[], Any],
        path: str,
        params: dict[str, Any],
    ) -> GatewayResult:
        return resilient_call(
            fn,
            operation=operation,
            is_retryable=is_transient_http_error,
            attempts=self._attempts,
            delay=self._delay,
            sleep=self._sleep,
            describe=self._describe("GET", path, params),
        )

    # Entitlement gateway

    def lookup_by_phone(self, phone: str) -> GatewayResult:
        """Accounts (0..n) that list this phone on one of their contacts.

        The ERP stores phones without the 55 DDI.
        """
        params = {"numeroTelefone": phone_for_erp(phone)}
        logger.info(
            "erp lookup by phone",
            extra={"extra_fields": safe_log_context(phone_hash=hash_identifier(phone))},
        )
        return self._call(
            "erp.lookup_by_phone",
            lambda: accounts_from_erp(self._get_json(PATH_PARTNERS_BY_PHONE, params)),
            PATH_PARTNERS_BY_PHONE,
            params,
        )

    def lookup_by_identifier(self, identifier: str) -> GatewayResult:
        """At most one account for the CNPJ; an empty list means not found."""
        params = {"cpfCnpj": only_digits(identifier)}
        return self._call(
            "erp.lookup_by_identifier",
            lambda: accounts_from_erp(self._get_json(PATH_PARTNERS, params))[:1],
            PATH_PARTNERS,
            params,
        )

    # Document gateway

    def list_open_bills(self, account_id: str) -> GatewayResult:
        """Unpaid receivable installments of the account (at most 10)."""
        params = {
            "max": OPEN_BILLS_LIMIT,
            "consolidada": "false",
            "contaPagarReceber": "RECEBER",
            "idParceiro": account_id,
            "idsSituacaoDocumento": "[1,2]",
            "quitada": "false",
        }

        def fetch() -> Any:
            payload = self._get_json(PATH_INSTALLMENTS, params)
            bills = (bill_from_erp(r, account_id) for r in _records(payload))
            return [b for b in bills if b is not None]

        return self._call("erp.list_open_bills", fetch, PATH_INSTALLMENTS, params)

    def fetch_bill_pdf(self, bill_id: str) -> GatewayResult:
        """PDF of one bill as base64. A non-PDF body is an ERP error."""
        params = {"idConta": bill_id}

        def fetch() -> DocumentFile:
            response = self._get(PATH_BILL_PDF, params)
            body = response.content or b""
            if not body.startswith(_PDF_MAGIC):
                raise GatewayError("not_pdf", detail=_error_detail(body))
            return DocumentFile(
                filename=f"boleto_{bill_id}.pdf",
                mimetype="application/pdf",
                base64=base64.b64encode(body).decode("ascii"),
            )

        return self._call("erp.fetch_bill_pdf", fetch, PATH_BILL_PDF, params)

    def list_invoices(self, account_id: str) -> GatewayResult:
        """Service invoices issued to the account."""
        params = {"idParceiro": account_id}

        def fetch() -> Any:
            payload = self._get_json(PATH_SERVICE_INVOICES, params)
            invoices = (invoice_from_erp(r, account_id) for r in _records(payload))
            return [i for i in invoices if i is not None]

        return self._call("erp.list_invoices", fetch, PATH_SERVICE_INVOICES, params)

    def fetch_invoice_xml(self, invoice_id: str) -> GatewayResult:
        """XML of one service invoice as base64, named <numero>-<codigo>.xml."""
        params = {"id": invoice_id}

        def fetch() -> DocumentFile:
            records = _records(self._get_json(PATH_SERVICE_INVOICE_XML, params))
            xml = str(records[0].get("xml") or "") if records else ""
            if not xml.strip().startswith("<"):
                raise GatewayError("not_xml")
            fields = parse_invoice_xml(xml)
            numero = fields["numero"] or invoice_id
            code = fields["codigoVerificacao"]
            filename = f"{numero}-{code}.xml" if code else f"nota_{numero}.xml"
            return DocumentFile(
                filename=filename,
                mimetype="application/xml",
                base64=base64.b64encode(xml.encode("utf-8")).decode("ascii"),
            )

        return self._call("erp.fetch_invoice_xml", fetch, PATH_SERVICE_INVOICE_XML, params)
